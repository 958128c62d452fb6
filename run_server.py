# run_server.py
import argparse
import logging
import os
import sys

from common.protocol import HOST, PORT, BUFFER_SIZE, FILES_DIR, SOCKET_TIMEOUT
from server_app.server import Server, ServerConfig

logger = logging.getLogger("run_server")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Serve the regular files of one directory over TCP.")
    parser.add_argument("--host", default="0.0.0.0", help=f"address to bind (default: all interfaces, e.g. {HOST})")
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--root", default=FILES_DIR, help="directory to serve (created if missing)")
    parser.add_argument("--chunk-size", type=int, default=BUFFER_SIZE, help="bytes per file chunk sent")
    parser.add_argument("--timeout", type=float, default=SOCKET_TIMEOUT, help="per-connection idle timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    os.makedirs(args.root, exist_ok=True)
    config = ServerConfig(root=args.root, host=args.host, port=args.port,
                          chunk_size=args.chunk_size, timeout=args.timeout)
    server = Server(config)
    try:
        server.start()
    except OSError as e:
        logger.error("[ERROR] Could not start server: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
