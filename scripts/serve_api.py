from __future__ import annotations

import argparse

import uvicorn


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the AuditFlow API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser


def main() -> None:
    # Build the app inside uvicorn so settings are read from the serving process env.
    args = _build_parser().parse_args()
    uvicorn.run("auditflow.apps.api.main:create_app", factory=True, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
