"""
Shared error taxonomy for the explanation tree engine.

Caller bugs (malformed input, unknown ids) are plain ``ValueError`` /
``LookupError`` subclasses so callers can catch them generically. Errors
raised by the summary pipeline and the tree builder live next to the code
that raises them and carry their own structured diagnostics.
"""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Malformed config, leaves or arguments. Never retried."""


class NotFoundError(LookupError):
    """An id passed to a query does not exist."""
