# server_app/files.py
import logging
import os
import stat

from common.protocol import (
    BUFFER_SIZE,
    LIST_HEADER, LIST_FOOTER, LIST_ENTRY,
    FILE_HEADER, FILE_FOOTER,
    ERR_OPEN_DIR, ERR_OPEN_FILE, ERR_READ_FILE,
)

logger = logging.getLogger(__name__)

FORBIDDEN_IN_NAME = ("/", "\\", "..", "\x00")


def validate_filename(name):
    """Return True if ``name`` may be looked up inside the served root.

    Purely syntactic: no normalisation and no symlink resolution. Names that
    are empty or carry a path separator or ``..`` never reach the filesystem.
    """
    if not name:
        return False
    return not any(bad in name for bad in FORBIDDEN_IN_NAME)


def list_entries(root):
    """(name, size) of every regular file in ``root``, in directory order."""
    entries = []
    for name in os.listdir(root):
        try:
            st = os.stat(os.path.join(root, name))
        except OSError as e:
            logger.debug("[LIST] Skipping '%s': %s", name, e)
            continue
        if stat.S_ISREG(st.st_mode):
            entries.append((name, st.st_size))
    return entries


def build_listing(root):
    try:
        entries = list_entries(root)
    except OSError as e:
        logger.warning("[LIST] Cannot open directory %s: %s", root, e)
        return ERR_OPEN_DIR
    lines = [LIST_HEADER]
    lines.extend(LIST_ENTRY.format(name=name, size=size) for name, size in entries)
    lines.append(LIST_FOOTER)
    return "".join(lines)


def stream_file(send, root, name, chunk_size=BUFFER_SIZE):
    """Send header, content in ``chunk_size`` pieces and footer for ``name``.

    ``send`` writes one frame (str or bytes) to the peer. ``name`` must
    already have passed validate_filename(). Returns the number of content
    bytes sent; -1 if the file could not be opened.
    """
    file_path = os.path.join(root, name)
    try:
        f = open(file_path, 'rb')
    except OSError as e:
        logger.info("[GET] Cannot open '%s': %s", name, e)
        send(ERR_OPEN_FILE.format(name=name))
        return -1

    sent = 0
    with f:
        send(FILE_HEADER.format(name=name))
        while True:
            try:
                chunk = f.read(chunk_size)
            except OSError as e:
                logger.error("[GET] Read error on '%s' after %d bytes: %s", name, sent, e)
                send(ERR_READ_FILE.format(name=name))
                return sent
            if not chunk:
                break
            send(chunk)
            sent += len(chunk)
        send(FILE_FOOTER)
    logger.info("[GET] '%s' sent (%d bytes)", name, sent)
    return sent
