"""Serve the traffic-light HTTP API with uvicorn.

Usage:
    uv run python -m scripts.run_api                          # 127.0.0.1:8000
    uv run python -m scripts.run_api --host 0.0.0.0 --port 9000
    uv run python -m scripts.run_api --reload                 # Local development
"""

import argparse
import logging

import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def main() -> None:
    """Parse args and start the server."""
    parser = argparse.ArgumentParser(description="Serve the traffic-light API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    args = parser.parse_args()

    uvicorn.run("traffic_light.api.main:app", host=args.host, port=args.port, reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
