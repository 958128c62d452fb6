# server_app/server.py
import logging
import os
import socket
import threading
from dataclasses import dataclass

from common.framing import FrameSendError, send_frame
from common.protocol import (
    HOST, PORT, BUFFER_SIZE, FILES_DIR, SOCKET_TIMEOUT, MAX_COMMAND_LENGTH, ENCODING,
    CMD_LIST, CMD_GET, CMD_EXIT,
    WELCOME, ERR_BAD_NAME, RESP_UNKNOWN, RESP_BYE,
    parse_command,
)
from server_app.files import build_listing, stream_file, validate_filename

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 0.5

# Session states
AWAIT_COMMAND = "AWAIT_COMMAND"
LISTING = "LISTING"
STREAMING = "STREAMING"
UNKNOWN = "UNKNOWN"
EXITING = "EXITING"
CLOSED = "CLOSED"


@dataclass(frozen=True)
class ServerConfig:
    root: str = FILES_DIR
    host: str = HOST
    port: int = PORT
    chunk_size: int = BUFFER_SIZE
    timeout: float = SOCKET_TIMEOUT
    backlog: int = 10


class ClientHandler(threading.Thread):
    def __init__(self, client_socket, client_address, config):
        super().__init__(daemon=True)
        self.client_socket = client_socket
        self.client_address = client_address
        self.config = config
        self.state = AWAIT_COMMAND
        self.receive_buffer = b""
        logger.info("[NEW CONNECTION] %s connected.", self.client_address)

    def run(self):
        try:
            self.client_socket.settimeout(self.config.timeout)
            self.send(WELCOME)
            while self.state != CLOSED:
                line = self._receive_line()
                if line is None:
                    logger.info("[%s] Disconnected (empty read).", self.client_address)
                    break
                self.dispatch(line)
        except socket.timeout:
            logger.info("[%s] Socket timeout, closing connection.", self.client_address)
        except FrameSendError as e:
            logger.warning("[%s] Could not send response: %s", self.client_address, e)
        except (ConnectionError, OSError) as e:
            logger.warning("[%s] Connection error: %s", self.client_address, e)
        finally:
            self.close()

    def dispatch(self, line):
        command = parse_command(line)
        logger.info("[%s] RX: Command='%s', Args='%s'", self.client_address, command.verb, command.argument)

        if command.verb == CMD_LIST:
            self.state = LISTING
            self.send(build_listing(self.config.root))
        elif command.verb == CMD_GET:
            self.state = STREAMING
            self.handle_get(command.argument)
        elif command.verb == CMD_EXIT:
            self.state = EXITING
            logger.info("[%s] Exit requested.", self.client_address)
            self.send(RESP_BYE)
            self.state = CLOSED
            return
        else:
            self.state = UNKNOWN
            self.send(RESP_UNKNOWN)
        self.state = AWAIT_COMMAND

    def handle_get(self, filename):
        if not validate_filename(filename):
            logger.info("[%s] Rejected filename '%s'.", self.client_address, filename)
            self.send(ERR_BAD_NAME)
            return
        stream_file(self.send, self.config.root, filename, self.config.chunk_size)

    def send(self, frame):
        send_frame(self.client_socket, frame)

    def close(self):
        self.state = CLOSED
        try:
            self.client_socket.shutdown(socket.SHUT_WR)
        except OSError as e:
            logger.debug("[%s] Note during socket.shutdown(SHUT_WR): %s", self.client_address, e)
        self.client_socket.close()
        logger.info("[%s] Connection closed.", self.client_address)

    def _receive_line(self):
        while b"\n" not in self.receive_buffer:
            if len(self.receive_buffer) >= MAX_COMMAND_LENGTH:
                line, self.receive_buffer = self.receive_buffer, b""
                return line.decode(ENCODING, errors='replace')
            part = self.client_socket.recv(BUFFER_SIZE)
            if not part:
                return None
            self.receive_buffer += part

        line_end_index = self.receive_buffer.find(b"\n")
        line = self.receive_buffer[:line_end_index + 1]
        self.receive_buffer = self.receive_buffer[line_end_index + 1:]
        return line.decode(ENCODING, errors='replace')


class Server:
    def __init__(self, config=None):
        self.config = config or ServerConfig()
        self.server_socket = None
        self.address = None
        self._running = threading.Event()

    def bind(self):
        """Open the listening socket. Failures here are fatal and propagate."""
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.server_socket.bind((self.config.host, self.config.port))
            self.server_socket.listen(self.config.backlog)
        except OSError:
            self.server_socket.close()
            self.server_socket = None
            raise
        self.server_socket.settimeout(ACCEPT_POLL_INTERVAL)
        self.address = self.server_socket.getsockname()
        self._running.set()
        logger.info("[LISTENING] Server is listening on %s:%s", *self.address)
        logger.info("Serving files from: %s", os.path.abspath(self.config.root))
        return self.address

    def serve_forever(self):
        try:
            while self._running.is_set():
                try:
                    client_socket, client_address = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if not self._running.is_set():
                        break
                    logger.error("[ERROR] accept() failed: %s", e)
                    continue
                ClientHandler(client_socket, client_address, self.config).start()
        finally:
            if self.server_socket:
                self.server_socket.close()
            logger.info("[CLOSED] Server socket closed.")

    def start(self):
        self.bind()
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            logger.info("[SHUTTING DOWN] Server is shutting down.")

    def stop(self):
        self._running.clear()
