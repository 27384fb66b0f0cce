"""Shared Rich console instance for CLI output."""

from rich.console import Console
from rich.text import Text

STATUS_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
}


def status_text(status: str) -> Text:
    """Status word styled by outcome."""
    return Text(status, style=STATUS_STYLES.get(status, ""))


console = Console()

__all__ = ["console", "status_text"]
