"""
Small helpers shared across the service.

This module provides helper functions for:
- Ensuring directory creation for local storage
- Stripping data-URI prefixes from base64 image strings
- Producing the epoch-millisecond timestamps stored in the database
"""

from __future__ import annotations

import re
import time
from pathlib import Path

# Matches the prefix browsers put in front of canvas.toDataURL() output
DATA_URI_PATTERN = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def strip_data_uri(image_data: str) -> str:
    """
    Remove a leading ``data:image/<type>;base64,`` prefix if present.

    Example:
        >>> strip_data_uri("data:image/png;base64,iVBORw0KGgo=")
        "iVBORw0KGgo="
        >>> strip_data_uri("iVBORw0KGgo=")
        "iVBORw0KGgo="
    """
    return DATA_URI_PATTERN.sub("", image_data, count=1)


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def now_millis() -> int:
    """Current UTC time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)
