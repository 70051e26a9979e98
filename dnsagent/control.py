"""A JSON event channel between the daemon and its command-line clients."""

from __future__ import annotations

import json
import os
import queue
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

ACCEPT_POLL = 0.2
_RECV_SIZE = 4096


@dataclass
class Event:
    """An event sent to or received from a peer."""

    name: str
    data: Any = None
    reply: bool = False

    def to_bytes(self) -> bytes:
        """Newline-terminated JSON form; raises TypeError if data is not serialisable."""
        body = json.dumps(
            {"name": self.name, "data": self.data, "reply": self.reply},
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return (body + "\n").encode("utf-8")

    @classmethod
    def from_json(cls, obj: Any) -> "Event":
        """Build an event from a decoded JSON object; raises ValueError if invalid."""
        if not isinstance(obj, dict):
            raise ValueError("event is not an object")
        fields = {key.lower(): value for key, value in obj.items()}
        name = fields.get("name", "")
        reply = fields.get("reply", False)
        if not isinstance(name, str):
            raise ValueError("event name is not a string")
        if not isinstance(reply, bool):
            raise ValueError("event reply is not a boolean")
        return cls(name=name, data=fields.get("data"), reply=reply)


def _decode(line: bytes) -> Event:
    try:
        obj = json.loads(line)
    except ValueError as err:
        raise ValueError(str(err)) from None
    return Event.from_json(obj)


def _read_events(sock: socket.socket) -> Iterator[Event]:
    """Yield events read from sock until the peer closes it."""
    buf = b""
    while True:
        chunk = sock.recv(_RECV_SIZE)
        if not chunk:
            break
        buf += chunk
        *lines, buf = buf.split(b"\n")
        for line in lines:
            if line.strip():
                yield _decode(line)
    if buf.strip():
        yield _decode(buf)


class Client:
    """A connection to a control server that sends commands and awaits replies."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._lock = threading.Lock()
        self._replies: queue.Queue = queue.Queue()
        threading.Thread(target=self._read_loop, daemon=True).start()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _read_loop(self) -> None:
        try:
            for event in _read_events(self._sock):
                if event.reply:
                    self._replies.put(event)
        except (OSError, ValueError):
            pass
        finally:
            self._replies.put(None)

    def _closed(self) -> ConnectionError:
        self._replies.put(None)
        return ConnectionError("control connection closed")

    def send(self, event: Event) -> Any:
        """Send event and return the data of the reply with the same name."""
        with self._lock:
            while True:
                try:
                    stale = self._replies.get_nowait()
                except queue.Empty:
                    break
                if stale is None:
                    raise self._closed()
            self._sock.sendall(event.to_bytes())
            while True:
                reply = self._replies.get()
                if reply is None:
                    raise self._closed()
                if reply.name == event.name:
                    return reply.data

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()


def dial(addr: str) -> Client:
    """Connect to the control socket at addr."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(addr)
    except OSError:
        sock.close()
        raise
    return Client(sock)


@dataclass
class Server:
    """Serves commands and broadcasts events to clients over a Unix socket."""

    addr: str
    on_connect: Optional[Callable[[socket.socket], None]] = None
    on_disconnect: Optional[Callable[[socket.socket], None]] = None
    on_event: Optional[Callable[[socket.socket, Event], None]] = None
    error_log: Optional[Callable[[Exception], None]] = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _commands: dict = field(default_factory=dict, init=False, repr=False)
    _clients: list = field(default_factory=list, init=False, repr=False)
    _listener: Optional[socket.socket] = field(default=None, init=False, repr=False)
    _stopped: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def __enter__(self) -> "Server":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def start(self) -> None:
        """Listen on addr, replacing any stale socket file, and serve in the background."""
        try:
            os.remove(self.addr)
        except FileNotFoundError:
            pass
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(self.addr)
            listener.listen()
            listener.settimeout(ACCEPT_POLL)
        except OSError:
            listener.close()
            raise
        stopped = threading.Event()
        with self._lock:
            self._listener = listener
            self._stopped = stopped
        threading.Thread(target=self._run, args=(listener, stopped), daemon=True).start()

    def command(self, name: str, handler: Callable[[Any], Any]) -> None:
        """Register handler to answer events called name."""
        with self._lock:
            self._commands[name] = handler

    def broadcast(self, event: Event) -> None:
        """Send event to every connected client."""
        payload = event.to_bytes()
        with self._lock:
            for conn in self._clients:
                try:
                    conn.sendall(payload)
                except OSError as err:
                    self._log(OSError(f"write event: {err}"))

    def stop(self) -> None:
        """Stop listening, disconnect clients and remove the socket file."""
        with self._lock:
            self._stopped.set()
            clients, self._clients = self._clients, []
            listener, self._listener = self._listener, None
        for conn in clients:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if listener is not None:
            listener.close()
            try:
                os.remove(self.addr)
            except FileNotFoundError:
                pass

    def _run(self, listener: socket.socket, stopped: threading.Event) -> None:
        while not stopped.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError as err:
                if stopped.is_set():
                    return
                self._log(err)
                stopped.wait(ACCEPT_POLL)
                continue
            conn.settimeout(None)
            threading.Thread(target=self._serve, args=(conn, stopped), daemon=True).start()

    def _serve(self, conn: socket.socket, stopped: threading.Event) -> None:
        if self.on_connect is not None:
            self.on_connect(conn)
        with self._lock:
            self._clients.append(conn)
        try:
            for event in _read_events(conn):
                if self.on_event is not None:
                    self.on_event(conn, event)
                self._handle(conn, event)
        except ValueError as err:
            self._log(ValueError(f"decode event: {err}"))
        except OSError as err:
            if not stopped.is_set():
                self._log(OSError(f"decode event: {err}"))
        finally:
            with self._lock:
                self._clients = [c for c in self._clients if c is not conn]
            conn.close()
            if self.on_disconnect is not None:
                self.on_disconnect(conn)

    def _handle(self, conn: socket.socket, event: Event) -> None:
        with self._lock:
            handler = self._commands.get(event.name)
        data = handler(event.data) if handler is not None else None
        try:
            payload = Event(name=event.name, data=data, reply=True).to_bytes()
        except (TypeError, ValueError) as err:
            self._log(err)
            return
        with self._lock:
            try:
                conn.sendall(payload)
            except OSError as err:
                self._log(err)

    def _log(self, err: Exception) -> None:
        if self.error_log is not None:
            self.error_log(err)