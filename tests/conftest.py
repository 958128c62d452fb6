import socket
import threading

import pytest

from common.protocol import WELCOME, encode
from server_app.server import Server, ServerConfig


def recv_exact(sock, n):
    buf = b""
    while len(buf) < n:
        part = sock.recv(n - len(buf))
        if not part:
            raise ConnectionError(f"closed after {len(buf)}/{n} bytes")
        buf += part
    return buf


def recv_until(sock, suffix):
    buf = b""
    while not buf.endswith(suffix):
        part = sock.recv(4096)
        if not part:
            raise ConnectionError(f"closed before {suffix!r}; got {buf!r}")
        buf += part
    return buf


@pytest.fixture
def served_root(tmp_path):
    root = tmp_path / "archivos"
    root.mkdir()
    return root


@pytest.fixture
def start_server(served_root):
    started = []

    def _start(chunk_size=4096, timeout=5.0, root=None):
        config = ServerConfig(root=str(root or served_root), host="127.0.0.1", port=0,
                              chunk_size=chunk_size, timeout=timeout)
        server = Server(config)
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        started.append((server, thread))
        return server

    yield _start
    for server, thread in started:
        server.stop()
        thread.join(timeout=5)


@pytest.fixture
def server(start_server):
    return start_server()


@pytest.fixture
def connect():
    sockets = []

    def _connect(server):
        sock = socket.create_connection(server.address, timeout=5)
        sockets.append(sock)
        assert recv_exact(sock, len(encode(WELCOME))) == encode(WELCOME)
        return sock

    yield _connect
    for sock in sockets:
        sock.close()
