import json
import os
import shutil
import socket
import tempfile
import threading

import pytest

from dnsagent.control import Event, Server, dial


@pytest.fixture
def sock_path():
    directory = tempfile.mkdtemp(prefix="ctl")
    yield os.path.join(directory, "c.sock")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def server(sock_path):
    srv = Server(addr=sock_path)
    srv.command("echo", lambda data: data)
    srv.start()
    yield srv
    srv.stop()


def test_event_bytes():
    assert Event(name="status").to_bytes() == b'{"name":"status","data":null,"reply":false}\n'


def test_event_round_trip():
    event = Event(name="x", data={"a": [1, 2]}, reply=True)
    assert Event.from_json(json.loads(event.to_bytes())) == event


def test_event_from_invalid_json():
    with pytest.raises(ValueError):
        Event.from_json([1, 2])
    with pytest.raises(ValueError):
        Event.from_json({"name": 3})


def test_send_returns_command_data(server, sock_path):
    with dial(sock_path) as client:
        assert client.send(Event(name="echo", data={"a": 1, "b": "x"})) == {"a": 1, "b": "x"}
        assert client.send(Event(name="echo", data="again")) == "again"


def test_unknown_command_returns_none(server, sock_path):
    with dial(sock_path) as client:
        assert client.send(Event(name="missing", data=1)) is None


def test_callbacks(sock_path):
    seen = []
    disconnected = threading.Event()
    srv = Server(
        addr=sock_path,
        on_connect=lambda conn: seen.append("connect"),
        on_event=lambda conn, event: seen.append(event.name),
        on_disconnect=lambda conn: disconnected.set(),
    )
    srv.start()
    try:
        client = dial(sock_path)
        client.send(Event(name="ping"))
        client.close()
        assert disconnected.wait(2)
    finally:
        srv.stop()
    assert seen == ["connect", "ping"]


def test_broadcast_reaches_clients(server, sock_path):
    raw = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    raw.connect(sock_path)
    with raw, raw.makefile("rb") as reader:
        raw.sendall(Event(name="echo", data=0).to_bytes())
        first = json.loads(reader.readline())
        assert first["reply"] is True
        server.broadcast(Event(name="update", data={"n": 1}))
        event = Event.from_json(json.loads(reader.readline()))
    assert event == Event(name="update", data={"n": 1}, reply=False)


def test_invalid_input_is_logged(sock_path):
    errors = []
    logged = threading.Event()

    def log(err):
        errors.append(str(err))
        logged.set()

    srv = Server(addr=sock_path, error_log=log)
    srv.command("echo", lambda data: data)
    srv.start()
    try:
        raw = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        raw.connect(sock_path)
        with raw:
            raw.sendall(b"not json\n")
            assert logged.wait(2)
        # The server keeps serving other clients after a bad one.
        with dial(sock_path) as client:
            assert client.send(Event(name="echo", data="still up")) == "still up"
    finally:
        srv.stop()
    assert errors[0].startswith("decode event")


def test_stop_removes_socket(sock_path):
    srv = Server(addr=sock_path)
    srv.start()
    assert os.path.exists(sock_path)
    srv.stop()
    assert not os.path.exists(sock_path)
    with pytest.raises(OSError):
        dial(sock_path)


def test_send_after_server_stop_fails(sock_path):
    srv = Server(addr=sock_path)
    srv.command("echo", lambda data: data)
    srv.start()
    client = dial(sock_path)
    try:
        assert client.send(Event(name="echo", data=5)) == 5
        srv.stop()
        with pytest.raises(OSError):
            client.send(Event(name="echo", data=6))
    finally:
        client.close()


def test_start_replaces_stale_socket_file(sock_path):
    with open(sock_path, "w") as f:
        f.write("stale")
    with Server(addr=sock_path) as srv:
        srv.command("echo", lambda data: data)
        with dial(sock_path) as client:
            assert client.send(Event(name="echo", data=[1])) == [1]