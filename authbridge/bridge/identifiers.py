"""Identifier validation for dynamically built SQL.

Table and column names cannot be bound as parameters, so every name that is
spliced into a statement passes through ``validate_identifier`` first.
Values are always bound and never go through here.
"""

import re

from authbridge.errors import InvalidIdentifier

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def is_valid_identifier(name) -> bool:
    """True if name is a bare SQL identifier (letters, digits, underscore)."""
    return isinstance(name, str) and _IDENTIFIER.fullmatch(name) is not None


def validate_identifier(name: str) -> str:
    """Return name unchanged, or raise InvalidIdentifier."""
    if not is_valid_identifier(name):
        raise InvalidIdentifier(name)
    return name


def quote_identifier(dialect, name: str) -> str:
    """Validate name, then quote it only if the dialect needs it (mixed case, reserved words)."""
    return dialect.identifier_preparer.quote(validate_identifier(name))
