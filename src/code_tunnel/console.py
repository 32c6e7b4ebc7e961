from __future__ import annotations

import sys

from code_tunnel.constants import TAG


def info(message: str = "") -> None:
    print(f"{TAG} {message}".rstrip())


def warn(message: str) -> None:
    print(f"{TAG} WARNING: {message}", file=sys.stderr)


def error(message: str) -> None:
    print(f"{TAG} ERROR: {message}", file=sys.stderr)
