from __future__ import annotations

import argparse

import uvicorn


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the FieldOps API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    return parser


def main() -> None:
    args = _build_parser().parse_args()
    # The import string lets uvicorn re-import the app factory on reload.
    uvicorn.run("fieldops.apps.api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
