import logging
import socket
import threading

import pytest

from common.protocol import (
    ERR_BAD_NAME, FILE_FOOTER, LIST_FOOTER, LIST_HEADER, RESP_BYE, RESP_UNKNOWN, WELCOME, encode,
)
from conftest import recv_exact, recv_until
from server_app.server import AWAIT_COMMAND, CLOSED, ClientHandler, Server, ServerConfig


def ask(sock, line, expected_len):
    sock.sendall(encode(line))
    return recv_exact(sock, expected_len)


def test_welcome_banner_names_the_commands(server):
    with socket.create_connection(server.address, timeout=5) as sock:
        banner = recv_exact(sock, len(encode(WELCOME))).decode("utf-8")
    for verb in ("LIST", "GET <nombre>", "EXIT"):
        assert verb in banner


def test_list_on_empty_root(server, connect):
    sock = connect(server)
    expected = encode(LIST_HEADER + LIST_FOOTER)

    assert ask(sock, "LIST\n", len(expected)) == expected


def test_list_shows_new_files_with_exact_sizes(server, connect, served_root):
    sock = connect(server)
    (served_root / "a.txt").write_bytes(b"abc")
    (served_root / "data.bin").write_bytes(b"\x00" * 1234)

    sock.sendall(b"LIST\n")
    listing = recv_until(sock, encode(LIST_FOOTER)).decode("utf-8")

    assert listing.startswith(LIST_HEADER)
    assert "- a.txt (3 bytes)\n" in listing
    assert "- data.bin (1234 bytes)\n" in listing
    assert listing.count("\n- ") == 2


def test_get_missing_file(server, connect):
    sock = connect(server)
    expected = b"Error: No se puede abrir el archivo 'ghost.txt'\n"

    assert ask(sock, "GET ghost.txt\n", len(expected)) == expected
    # The connection stays usable.
    expected = encode(LIST_HEADER + LIST_FOOTER)
    assert ask(sock, "LIST\n", len(expected)) == expected


@pytest.mark.parametrize("name", ["../secret", "a/b", "..", "sub\\dir"])
def test_get_rejects_unsafe_names(server, connect, name):
    sock = connect(server)

    assert ask(sock, f"GET {name}\n", len(encode(ERR_BAD_NAME))) == encode(ERR_BAD_NAME)


def test_get_with_empty_name_is_rejected(server, connect):
    sock = connect(server)

    assert ask(sock, "GET \n", len(encode(ERR_BAD_NAME))) == encode(ERR_BAD_NAME)


@pytest.mark.parametrize("chunk_size", [1, 5, 4096])
def test_get_returns_exact_bytes(start_server, connect, served_root, chunk_size):
    content = bytes(range(256)) * 40
    (served_root / "blob.bin").write_bytes(content)
    server = start_server(chunk_size=chunk_size)
    sock = connect(server)
    expected = b"=== CONTENIDO DE blob.bin ===\n" + content + encode(FILE_FOOTER)

    assert ask(sock, "GET blob.bin\n", len(expected)) == expected


def test_unknown_command(server, connect):
    sock = connect(server)

    for line in ("HELLO\n", "list\n", "GET\n"):
        assert ask(sock, line, len(encode(RESP_UNKNOWN))) == encode(RESP_UNKNOWN)


def test_crlf_terminated_commands(server, connect):
    sock = connect(server)
    expected = encode(LIST_HEADER + LIST_FOOTER)

    assert ask(sock, "LIST\r\n", len(expected)) == expected


def test_pipelined_lines_are_answered_in_order(server, connect):
    sock = connect(server)
    expected = encode(RESP_UNKNOWN + LIST_HEADER + LIST_FOOTER + RESP_BYE)

    assert ask(sock, "NOPE\nLIST\nEXIT\n", len(expected)) == expected


def test_exit_closes_the_connection(server, connect):
    sock = connect(server)

    assert ask(sock, "EXIT\n", len(encode(RESP_BYE))) == encode(RESP_BYE)
    assert sock.recv(100) == b""


def test_clients_are_served_concurrently(server, served_root):
    (served_root / "a.txt").write_bytes(b"abc")
    idle = socket.create_connection(server.address, timeout=5)
    try:
        recv_exact(idle, len(encode(WELCOME)))
        # A second client gets answers while the first one is still open.
        with socket.create_connection(server.address, timeout=5) as other:
            recv_exact(other, len(encode(WELCOME)))
            expected = b"=== CONTENIDO DE a.txt ===\nabc" + encode(FILE_FOOTER)
            assert ask(other, "GET a.txt\n", len(expected)) == expected
    finally:
        idle.close()


def test_many_parallel_downloads(server, served_root):
    content = b"0123456789" * 1000
    (served_root / "ten.txt").write_bytes(content)
    expected = b"=== CONTENIDO DE ten.txt ===\n" + content + encode(FILE_FOOTER)
    results = []

    def fetch():
        with socket.create_connection(server.address, timeout=5) as sock:
            recv_exact(sock, len(encode(WELCOME)))
            results.append(ask(sock, "GET ten.txt\n", len(expected)))

    threads = [threading.Thread(target=fetch) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert results == [expected] * 8


def test_disconnect_ends_only_that_session(server, connect):
    dropped = connect(server)
    dropped.close()

    sock = connect(server)
    expected = encode(LIST_HEADER + LIST_FOOTER)
    assert ask(sock, "LIST\n", len(expected)) == expected


def test_idle_connection_times_out(start_server):
    server = start_server(timeout=0.2)
    with socket.create_connection(server.address, timeout=5) as sock:
        recv_exact(sock, len(encode(WELCOME)))
        assert sock.recv(100) == b""


def test_handler_state_machine(served_root):
    server_side, client_side = socket.socketpair()
    config = ServerConfig(root=str(served_root), timeout=5)
    handler = ClientHandler(server_side, ("local", 0), config)
    try:
        handler.dispatch("LIST\n")
        assert handler.state == AWAIT_COMMAND
        handler.dispatch("WHAT\n")
        assert handler.state == AWAIT_COMMAND
        handler.dispatch("EXIT\n")
        assert handler.state == CLOSED

        expected = encode(LIST_HEADER + LIST_FOOTER + RESP_UNKNOWN + RESP_BYE)
        assert recv_exact(client_side, len(expected)) == expected
    finally:
        server_side.close()
        client_side.close()


def test_bind_failure_propagates(server):
    taken = ServerConfig(host="127.0.0.1", port=server.address[1])
    other = Server(taken)
    # SO_REUSEADDR does not allow two listeners on the same port.
    with pytest.raises(OSError):
        other.bind()


class FlakyListener:
    """Listening socket whose first accept() fails."""

    def __init__(self, sock):
        self.sock = sock
        self.failed = False

    def accept(self):
        if not self.failed:
            self.failed = True
            raise OSError(24, "Too many open files")
        return self.sock.accept()

    def __getattr__(self, name):
        return getattr(self.sock, name)


def test_accept_failure_is_logged_and_serving_continues(served_root, caplog):
    server = Server(ServerConfig(root=str(served_root), host="127.0.0.1", port=0, timeout=5))
    server.bind()
    listener = FlakyListener(server.server_socket)
    server.server_socket = listener
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    caplog.set_level(logging.ERROR, logger="server_app.server")
    thread.start()
    try:
        with socket.create_connection(server.address, timeout=5) as sock:
            assert recv_exact(sock, len(encode(WELCOME))) == encode(WELCOME)
    finally:
        server.stop()
        thread.join(timeout=5)

    assert listener.failed
    assert any("accept() failed" in record.getMessage() for record in caplog.records)
