"""Logging setup and terminal-safe text handling.

Log records go through rich's RichHandler on stderr. Text printed to the
user can contain arrows and tree glyphs; on terminals without UTF-8 these
are replaced with ASCII equivalents.
"""
import locale
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Unicode to ASCII glyph mapping for non-UTF-8 terminals
ICON_MAP = {
    # Status
    '✓': '[OK]',
    '✗': '[FAIL]',
    '⚠': '[WARN]',

    # Arrows used in mapping labels
    '→': '->',
    '←': '<-',
    '↔': '<->',
    '⇒': '=>',

    # Tree drawing
    '│': '|',
    '─': '-',
    '└': '+',
    '├': '+',
    '┌': '+',
    '┐': '+',
    '┘': '+',
    '┤': '+',

    # Symbols
    '…': '...',
    '•': '*',
}

PACKAGE_LOGGER = "maptracer"


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding capability.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if getattr(sys.stdout, 'encoding', None):
        return sys.stdout.encoding.lower()

    try:
        return locale.getpreferredencoding().lower()
    except (LookupError, ValueError):
        return 'ascii'


def is_utf8_capable() -> bool:
    """Check if the terminal can handle UTF-8 output."""
    return detect_terminal_encoding().replace('_', '-') in ('utf-8', 'utf8')


def sanitize_for_terminal(text: str, force: bool = False) -> str:
    """Replace Unicode glyphs with ASCII equivalents if the terminal lacks UTF-8.

    Args:
        text: Text potentially containing Unicode glyphs
        force: Sanitize regardless of terminal capability

    Returns:
        str: Text safe for the current terminal
    """
    if not force and is_utf8_capable():
        return text

    sanitized = text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        sanitized = sanitized.replace(unicode_char, ascii_replacement)
    return sanitized


def configure_logging(level: str = "WARNING", console: Optional[Console] = None) -> logging.Logger:
    """Configure the package logger with a RichHandler.

    Safe to call repeatedly; the handler is replaced, not duplicated.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        console: Console for log output (defaults to stderr)

    Returns:
        The package logger

    Raises:
        ValueError: If level is not a known logging level
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, '_maptracer', False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    handler._maptracer = True
    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package namespace."""
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
