# common/framing.py
import socket

from common.protocol import END_MARKER, ERROR_MARKER, FILE_FOOTER, FILE_HEADER_PREFIX, encode


class FrameSendError(ConnectionError):
    """A frame could not be written completely."""


def send_frame(sock, data):
    """Write every byte of ``data`` or raise FrameSendError.

    Loops over ``send()`` instead of trusting a single call, so a short write
    never leaves half a frame on the wire unnoticed.
    """
    if isinstance(data, str):
        data = encode(data)
    view = memoryview(data)
    total = 0
    while total < len(view):
        try:
            sent = sock.send(view[total:])
        except socket.timeout:
            raise FrameSendError(f"Timeout after sending {total}/{len(view)} bytes")
        except OSError as e:
            raise FrameSendError(f"Socket error after sending {total}/{len(view)} bytes: {e}")
        if sent == 0:
            raise FrameSendError(f"Connection broken after sending {total}/{len(view)} bytes")
        total += sent
    return total


class ResponseReassembler:
    """Finds the end of a GET response in a stream of arbitrary reads.

    There is no length field: the frame ends at the end of the line that
    carries the file footer marker or an ``Error:`` marker. The last
    ``len(longest marker) - 1`` bytes seen are kept between reads, so a
    marker split over two (or more) reads is still found.
    """

    def __init__(self, markers=(END_MARKER, ERROR_MARKER)):
        self.markers = tuple(markers)
        self.done = False
        self.marker = None  # the marker that ended the frame
        self.received = 0  # bytes accepted as part of the frame
        self._keep = max(len(m) for m in self.markers) - 1
        self._tail = b""
        self._marker_seen = False

    def feed(self, chunk):
        """Take one read; return the part of it that belongs to the frame.

        Once ``done`` is set, the rest of the chunk and any later chunk are
        trailing noise and nothing is returned.
        """
        if self.done or not chunk:
            return b""
        if self._marker_seen:
            return self._accept(self._cut_at_newline(chunk, 0))

        window = self._tail + chunk
        marker_end = None
        for marker in self.markers:
            idx = window.find(marker)
            if idx != -1 and (marker_end is None or idx + len(marker) < marker_end):
                marker_end = idx + len(marker)
                self.marker = marker

        if marker_end is None:
            self._tail = window[-self._keep:] if self._keep else b""
            return self._accept(chunk)

        self._marker_seen = True
        self._tail = b""
        start = max(marker_end - (len(window) - len(chunk)), 0)
        return self._accept(self._cut_at_newline(chunk, start))

    def _cut_at_newline(self, chunk, start):
        end = chunk.find(b"\n", start)
        if end == -1:
            return chunk
        self.done = True
        return chunk[:end + 1]

    def _accept(self, part):
        self.received += len(part)
        return part


class FrameWriter:
    """Writes a GET frame to a local file.

    With ``strip=False`` every byte is written as received (header and footer
    included). With ``strip=True`` the header line and the footer literal are
    left out; the last ``len(FILE_FOOTER)`` bytes are held back until
    ``finish()`` since only then is it known whether they are the footer.
    """

    def __init__(self, fileobj, strip=False):
        self.fileobj = fileobj
        self.strip = strip
        self.written = 0
        self._footer = encode(FILE_FOOTER)
        self._head = b""
        self._in_header = strip
        self._pending = b""

    def write(self, data):
        if not self.strip:
            self._write(data)
            return
        if self._in_header:
            self._head += data
            newline = self._head.find(b"\n")
            if newline == -1:
                return
            first, data = self._head[:newline + 1], self._head[newline + 1:]
            self._head = b""
            self._in_header = False
            if not first.startswith(FILE_HEADER_PREFIX):
                data = first + data
        buf = self._pending + data
        keep = len(self._footer)
        if len(buf) > keep:
            self._write(buf[:-keep])
            buf = buf[-keep:]
        self._pending = buf

    def finish(self):
        if not self.strip:
            return
        rest = self._head + self._pending
        if rest.endswith(self._footer):
            rest = rest[:-len(self._footer)]
        self._head = self._pending = b""
        self._write(rest)

    def _write(self, data):
        if data:
            self.fileobj.write(data)
            self.written += len(data)
