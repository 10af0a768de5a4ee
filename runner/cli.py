from __future__ import annotations

import argparse
import os


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for the smoke runner."""
    parser = argparse.ArgumentParser(description="fileserver smoke runner")
    parser.add_argument("--base-url", default=os.getenv("BASE_URL", "https://127.0.0.1:1234"))
    parser.add_argument("--timeout", type=float, default=20.0, help="seconds to wait for /health")
    parser.add_argument(
        "--verify",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="verify the server certificate (off for self-signed)",
    )
    return parser.parse_args(argv)
