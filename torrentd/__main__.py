"""Entry point for ``python -m torrentd``."""

from __future__ import annotations

from torrentd.cli.main import main

if __name__ == "__main__":
    main()
