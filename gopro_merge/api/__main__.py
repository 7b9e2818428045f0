"""Run the API with uvicorn: ``python -m gopro_merge.api``."""

import argparse
from typing import Sequence

import uvicorn

from gopro_merge.core.config import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the GoPro Merge API with uvicorn")
    parser.add_argument("--host", default=settings.api_host, help="Bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Port (default: %(default)s)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for local development")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    uvicorn.run(
        "gopro_merge.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
