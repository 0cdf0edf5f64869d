"""torrentd - live configuration reconciliation for a torrent daemon."""

from __future__ import annotations

__version__ = "0.1.0"
