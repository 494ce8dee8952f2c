"""Stable identifiers for source images.

The identifier is derived from the base name only, never from file
content, so a variant set can be found again after its source is gone.
Two sources that differ only by extension share an identifier.
"""

import hashlib
import os
from pathlib import Path

IDENTIFIER_LENGTH = 12


def derive_identifier(base_name: str) -> str:
    """Return the truncated SHA-256 hex digest of *base_name*."""
    digest = hashlib.sha256(base_name.encode("utf-8", "surrogatepass"))
    return digest.hexdigest()[:IDENTIFIER_LENGTH]


def base_name(path: str | os.PathLike[str]) -> str:
    """Return the final path component with its last extension removed."""
    return Path(path).stem


def identifier_for(path: str | os.PathLike[str]) -> str:
    return derive_identifier(base_name(path))
