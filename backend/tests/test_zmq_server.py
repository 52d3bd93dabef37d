"""Tests for the ZMQ transport: ping, auth token, malformed input, shutdown."""

import time
import uuid

import pytest
import zmq


def _raw_socket(port: int):
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.RCVTIMEO, 5000)
    sock.connect(f"tcp://127.0.0.1:{port}")
    return ctx, sock


@pytest.mark.smoke
def test_ping_pong(zmq_client):
    msg_id = str(uuid.uuid4())
    resp = zmq_client.request({"cmd": "ping", "id": msg_id})
    assert resp["id"] == msg_id
    assert resp["status"] == "alive"
    assert isinstance(resp["uptime_s"], float)
    assert resp["render_state"] == "active"


def test_ping_socket(zmq_ping_client):
    resp = zmq_ping_client.request({"cmd": "ping", "id": "p1"})
    assert resp["id"] == "p1"
    assert resp["status"] == "alive"


def test_unknown_command(zmq_client):
    msg_id = str(uuid.uuid4())
    resp = zmq_client.request({"cmd": "foobar", "id": msg_id})
    assert resp["id"] == msg_id
    assert resp["ok"] is False
    assert resp["error"] == "unknown: foobar"


def test_missing_token_rejected(zmq_server):
    ctx, sock = _raw_socket(zmq_server.port)
    sock.send_json({"cmd": "get_state", "id": "x"})
    resp = sock.recv_json()
    assert resp["ok"] is False
    assert "auth token" in resp["error"]
    sock.close()
    ctx.term()


def test_wrong_token_rejected_on_ping_socket(zmq_server):
    ctx, sock = _raw_socket(zmq_server.ping_port)
    sock.send_json({"cmd": "ping", "id": "x", "_token": "nope"})
    resp = sock.recv_json()
    assert resp["ok"] is False
    sock.close()
    ctx.term()


def test_invalid_json(zmq_server):
    ctx, sock = _raw_socket(zmq_server.port)
    sock.send(b"{not json")
    resp = sock.recv_json()
    assert resp == {"ok": False, "error": "Invalid message format"}
    sock.close()
    ctx.term()


def test_non_object_json(zmq_server):
    ctx, sock = _raw_socket(zmq_server.port)
    sock.send_json([1, 2, 3])
    resp = sock.recv_json()
    assert resp["ok"] is False
    sock.close()
    ctx.term()


def test_server_survives_bad_input(zmq_server, zmq_client):
    ctx, sock = _raw_socket(zmq_server.port)
    sock.send(b"\xff\xfe")
    sock.recv_json()
    sock.close()
    ctx.term()
    assert zmq_client.request({"cmd": "ping", "id": "after"})["status"] == "alive"


def test_handler_exception_is_contained(zmq_server, zmq_client, monkeypatch):
    def boom(message):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(zmq_server, "_handle_get_state", boom)
    resp = zmq_client.request({"cmd": "get_state", "id": "x"})
    assert resp == {"id": "x", "ok": False, "error": "Internal processing error"}


def test_shutdown_stops_loop(zmq_server_disposable):
    ctx, sock = _raw_socket(zmq_server_disposable.port)
    msg_id = str(uuid.uuid4())
    sock.send_json({"cmd": "shutdown", "id": msg_id, "_token": zmq_server_disposable.token})
    resp = sock.recv_json()
    assert resp == {"id": msg_id, "ok": True}
    time.sleep(0.7)
    assert zmq_server_disposable.running is False
    assert zmq_server_disposable.render_loop.state.value == "stopped"
    sock.close()
    ctx.term()
