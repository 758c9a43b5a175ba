"""Command line interface (``python -m cadastral_import.cli``)."""

from __future__ import annotations


def main(argv: list[str] | None = None) -> int:
    # __main__ を遅延 import (python -m 実行時の二重 import 回避)
    from .__main__ import main as _main

    return _main(argv)


__all__ = ["main"]
