"""Command line launcher for the hero pool service (``python -m heropool``)."""

from __future__ import annotations

import argparse
import json
from typing import Sequence

import uvicorn

from app.config import settings
from app.policy import PolicyStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heropool", description=__doc__)
    parser.add_argument("--host", default=settings.server_host)
    parser.add_argument("--port", type=int, default=settings.server_port)
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=settings.environment == "development",
        help="Reload on code changes (defaults to on when ENVIRONMENT=development).",
    )
    parser.add_argument(
        "--check-policy",
        action="store_true",
        help="Print the effective hero policy and its fingerprint, then exit.",
    )
    return parser


def check_policy() -> int:
    """Report the effective policy; non-zero when the file needed fallbacks."""

    snapshot = PolicyStore(settings.hero_policy_path).load()
    report = {
        "path": str(snapshot.path) if snapshot.path else None,
        "fingerprint": snapshot.fingerprint,
        "issues": snapshot.issues,
        "policy": snapshot.policy.model_dump(by_alias=True),
    }
    print(json.dumps(report, indent=2, sort_keys=True))
    return 1 if snapshot.issues else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.check_policy:
        return check_policy()

    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    raise SystemExit(main())
