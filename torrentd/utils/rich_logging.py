"""Rich logging integration for torrentd.

Provides the Rich console handler used for interactive output.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape


class CorrelationRichHandler(RichHandler):
    """RichHandler with correlation ID support.

    The calling function name is rendered in pink ahead of the message.
    Message text is escaped, since configuration values are operator input
    and may contain square brackets.
    """

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        show_colors: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize RichHandler.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            show_colors: Whether to color the function name
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(file=sys.stdout, markup=True, color_system="auto")

        self.show_colors = show_colors
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with correlation ID and function name."""
        try:
            if not hasattr(record, "correlation_id"):
                from torrentd.utils.logging_config import correlation_id

                record.correlation_id = correlation_id.get() or "no-correlation-id"

            # Copy so file handlers still see the plain message.
            record = logging.makeLogRecord(record.__dict__)
            message = escape(record.getMessage())
            func_name = getattr(record, "funcName", None)
            if self.show_colors and func_name:
                message = f"[#ff69b4]{func_name}[/#ff69b4] {message}"
            record.msg = message
            record.args = ()

            super().emit(record)
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        """Report logging failures on stderr without re-entering logging."""
        try:
            sys.stderr.write(
                f"Logging error: {record.levelname} {record.name}: {record.msg}\n"
            )
            sys.stderr.flush()
        except Exception:
            pass


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
    show_colors: bool = True,
) -> logging.Handler:
    """Create a RichHandler with correlation ID support.

    Args:
        console: Optional Rich Console instance
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks
        show_colors: Whether to color function names

    Returns:
        Configured RichHandler instance

    """
    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        show_colors=show_colors,
    )
