"""
Serve the bucketview API.
"""

import argparse
import logging

import uvicorn

from bucketview.api import create_app
from bucketview.config import get_settings


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m bucketview")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to listen on")
    parser.add_argument("--port", type=int, default=settings.port, help=f"Port to listen on (default {settings.port})")
    parser.add_argument("--no-preload", action="store_true", help="Do not crawl the bucket at startup")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    args = parser.parse_args()

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s",
                        level=logging.DEBUG if args.verbose else logging.INFO)
    if args.no_preload:
        settings = settings.model_copy(update={"preload_on_startup": False})
    uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
