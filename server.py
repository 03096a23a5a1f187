import argparse
import logging
import os
from http.server import HTTPServer

from miro_sheets.handler import MiroSheetsHandler
from miro_sheets.logger import get_logger, setup_logging

logger = get_logger("server")


def build_parser():
    parser = argparse.ArgumentParser(description="MIRÓ spreadsheet conversion server")
    parser.add_argument("--host", default=os.environ.get("MIRO_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("MIRO_PORT", "8000")))
    parser.add_argument("--log-level", default=os.environ.get("MIRO_LOG_LEVEL", "INFO"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level))

    server = HTTPServer((args.host, args.port), MiroSheetsHandler)
    logger.info("MIRÓ spreadsheet server running on http://%s:%d", args.host, args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
