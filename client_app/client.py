# client_app/client.py
import codecs
import logging
import socket
import sys

from common.framing import FrameWriter, ResponseReassembler, send_frame
from common.protocol import (
    BUFFER_SIZE, SOCKET_TIMEOUT, ENCODING,
    CMD_LIST, CMD_GET_PREFIX, CMD_EXIT,
    ERROR_MARKER, SAVE_RAW, SAVE_STRIPPED,
)

logger = logging.getLogger(__name__)


class Client:
    def __init__(self, host, port, chunk_size=BUFFER_SIZE, timeout=SOCKET_TIMEOUT, save_policy=SAVE_RAW):
        if save_policy not in (SAVE_RAW, SAVE_STRIPPED):
            raise ValueError(f"Unknown save policy: {save_policy!r}")
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.save_policy = save_policy
        self.client_socket = None
        self.welcome = ""

    def connect(self):
        try:
            self.client_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.client_socket.settimeout(self.timeout)
            self.client_socket.connect((self.host, self.port))
            self.welcome = self._read_once()
            return True, f"Connected to server at {self.host}:{self.port}"
        except socket.timeout:
            self.close()
            return False, f"Connection to server {self.host}:{self.port} timed out."
        except (OSError, ConnectionError) as e:
            self.close()
            return False, f"Error connecting to server: {e}"

    def close(self):
        if self.client_socket:
            self.client_socket.close()
            self.client_socket = None

    def disconnect(self, send_exit_cmd=True):
        if self.client_socket and send_exit_cmd:
            _, msg = self.request_exit()
            return msg
        self.close()
        return "Disconnected."

    def _send_line(self, line):
        send_frame(self.client_socket, line + "\n")

    def _read_once(self):
        data = self.client_socket.recv(BUFFER_SIZE)
        if not data:
            raise ConnectionError("Connection closed by server.")
        return data.decode(ENCODING, errors='replace')

    def request_raw(self, line):
        """Send any command line and take one read as its complete answer.

        Used for LIST and for unrecognised commands: these frames carry no
        terminator, so the protocol relies on them fitting in a single read.
        GET and EXIT lines are handed to request_file / request_exit, which
        read their answers the way those commands need.
        """
        if not self.client_socket:
            return None, "Not connected."
        if line == CMD_EXIT:
            return self.request_exit()
        if line.startswith(CMD_GET_PREFIX):
            frame, msg = self.request_file(line[len(CMD_GET_PREFIX):])
            if frame is None:
                return None, msg
            return frame.decode(ENCODING, errors='replace'), msg
        try:
            self._send_line(line)
            return self._read_once(), f"'{line}' answered."
        except socket.timeout:
            self.close()
            return None, f"Timeout waiting for answer to '{line}'."
        except (OSError, ConnectionError) as e:
            self.close()
            return None, f"Comm error on '{line}': {e}"

    def request_list(self):
        return self.request_raw(CMD_LIST)

    def request_exit(self):
        if not self.client_socket:
            return None, "Not connected."
        try:
            self._send_line(CMD_EXIT)
            farewell = self._read_once()
        except (OSError, ConnectionError) as e:
            farewell = None
            logger.debug("No farewell received: %s", e)
        finally:
            self.close()
        return farewell, "Disconnected."

    def request_file(self, filename, save_path=None, chunk_callback=None, save_policy=None):
        """GET ``filename``; returns (frame bytes, message).

        Each piece of the frame is passed to ``chunk_callback`` as it
        arrives and, when ``save_path`` is given, written there according to
        the save policy. The frame is None on a communication failure.
        """
        if not self.client_socket:
            return None, "Not connected."
        policy = save_policy or self.save_policy
        out_file = None
        save_note = ""
        if save_path:
            try:
                out_file = open(save_path, 'wb')
            except OSError as e:
                save_note = f" Could not create local file '{save_path}': {e}"

        reassembler = ResponseReassembler()
        writer = FrameWriter(out_file, strip=policy == SAVE_STRIPPED) if out_file else None
        parts = []
        try:
            self._send_line(CMD_GET_PREFIX + filename)
            while not reassembler.done:
                chunk = self.client_socket.recv(self.chunk_size)
                if not chunk:
                    raise ConnectionError("Connection closed before the end of the file frame.")
                part = reassembler.feed(chunk)
                parts.append(part)
                if chunk_callback:
                    chunk_callback(part)
                if writer:
                    writer.write(part)
            if writer:
                writer.finish()
        except socket.timeout:
            self.close()
            return None, f"Timeout during GET of '{filename}'.{save_note}"
        except (OSError, ConnectionError) as e:
            self.close()
            return None, f"Comm error on GET '{filename}': {e}{save_note}"
        finally:
            if out_file:
                out_file.close()

        frame = b"".join(parts)
        if reassembler.marker == ERROR_MARKER:
            return frame, f"Server refused '{filename}'.{save_note}"
        if out_file:
            return frame, f"Archivo guardado como: {save_path}"
        return frame, f"File '{filename}' received ({len(frame)} bytes).{save_note}"

    def run_ui(self, read=input, out=None):
        out = out or sys.stdout
        connected, msg = self.connect()
        if not connected:
            out.write(msg + "\n")
            return
        out.write(f"{msg}\n\n{self.welcome}\n")

        while self.client_socket:
            try:
                command = read("\n> Ingrese comando: ")
            except EOFError:
                command = CMD_EXIT
            command = command.rstrip("\r\n")
            if not command:
                continue

            if command == CMD_EXIT:
                farewell, _ = self.request_exit()
                out.write(farewell or "")
                break

            out.write("\n--- Respuesta del servidor ---\n")
            if command.startswith(CMD_GET_PREFIX):
                save_path = None
                answer = read("¿Desea guardar el archivo localmente? (s/n): ").strip()
                if answer in ("s", "S"):
                    save_path = read("Nombre del archivo local: ").strip() or None
                decoder = codecs.getincrementaldecoder(ENCODING)(errors='replace')
                frame, msg = self.request_file(
                    command[len(CMD_GET_PREFIX):], save_path,
                    chunk_callback=lambda part: out.write(decoder.decode(part)),
                )
                out.write(decoder.decode(b"", final=True))
                if frame is None or save_path:
                    out.write(f"\n{msg}\n")
            else:
                text, msg = self.request_raw(command)
                out.write(text if text is not None else msg + "\n")
            out.write("------------------------------\n")

        self.close()
        out.write("\nConexión cerrada\n")
