"""
Development server entry point (`tutor-server`).

Production deployments point uvicorn/gunicorn at server.asgi:app directly.
"""

from __future__ import annotations

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(prog="tutor-server", description="Run the tutor HTTP API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Dev mode only")
    args = parser.parse_args()

    uvicorn.run(
        "server.asgi:app",
        host=args.host,
        port=args.port,
        log_level="info",
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
