# run_client.py
import argparse
import logging

from client_app.client import Client
from common.protocol import HOST, PORT, BUFFER_SIZE, SAVE_RAW, SAVE_STRIPPED


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Interactive client for the directory server.")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--chunk-size", type=int, default=BUFFER_SIZE, help="bytes per read while receiving a file")
    parser.add_argument("--strip", action="store_true",
                        help="leave the header and footer lines out of saved files")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    client = Client(args.host, args.port, chunk_size=args.chunk_size,
                    save_policy=SAVE_STRIPPED if args.strip else SAVE_RAW)
    client.run_ui()


if __name__ == "__main__":
    main()
