"""Shared utility functions for mail folder to PDF conversion."""

import os
import re
import sys
import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

LOCAL_TIMEZONE = "local"


def configure_logging(verbose: int = 0, quiet: int = 0) -> None:
    """
    Adjust the root log level to the -v / -q counts of the command line.

    Args:
        verbose: Number of --verbose flags
        quiet: Number of --quiet flags (1 keeps errors, 2 keeps only fatal)
    """
    if quiet >= 2:
        level = logging.CRITICAL
    elif quiet == 1:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.getLogger().setLevel(level)


def resolve_timezone(name: Optional[str]) -> Tuple[str, tzinfo]:
    """
    Turn a timezone name into a (normalized name, tzinfo) pair.

    Args:
        name: IANA timezone name, or None / "local" for the system timezone

    Returns:
        Tuple of the name used as index key and the tzinfo object

    Raises:
        ValueError: if the name is not a known timezone
    """
    if not name or name == LOCAL_TIMEZONE:
        return LOCAL_TIMEZONE, datetime.now().astimezone().tzinfo
    if name.upper() == "UTC":
        return "UTC", timezone.utc
    try:
        return name, ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"not a valid timezone name: {name}") from e


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a string for use as a filename.

    Args:
        filename: The string to sanitize

    Returns:
        A safe filename string
    """
    # Path separators and control characters only; the template decides the rest
    safe = re.sub(r'[/\\\x00-\x1f]', '_', filename)
    safe = safe.strip()
    return safe if safe else "untitled"


def ask_confirmation(question: str) -> bool:
    """
    Ask a yes/no question on stderr until a valid answer is given.

    Args:
        question: The prompt to print

    Returns:
        True for yes, False for no (or end of input)
    """
    while True:
        print(question, end='', file=sys.stderr, flush=True)
        answer = sys.stdin.readline()
        if not answer:
            return False
        answer = answer.strip().lower()
        if answer in ('y', 'yes'):
            return True
        if answer in ('n', 'no'):
            return False


def output_path_status(path: str) -> str:
    """
    Classify what currently occupies an output path.

    Args:
        path: Path of a file about to be written

    Returns:
        'free', 'file' (existing regular file) or 'other' (directory etc.)
    """
    if os.path.isfile(path):
        return 'file'
    if os.path.exists(path):
        return 'other'
    return 'free'
