"""Run the monitor service: ``python -m lightmon [--host H] [--port P]``."""

from __future__ import annotations

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="Light switch command verifier")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    uvicorn.run("lightmon.main:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
