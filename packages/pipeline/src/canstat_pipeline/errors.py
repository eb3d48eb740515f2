"""
errors.py — Exception taxonomy for the retrieval pipeline.

Each stage raises its own error type and never suppresses it:

  search     InvalidQuery, UnknownScope
  fetch      RetrievalError(identifier, cause)
  normalize  UnknownUnit(unit_code)
  reshape    JoinKeyMismatch(keys)    — strict joins only
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class CanstatError(Exception):
    """Base class for every pipeline failure."""


class InvalidQuery(CanstatError, ValueError):
    def __init__(self, query: str) -> None:
        self.query = query
        super().__init__(f"Search query must not be empty (got {query!r})")


class UnknownScope(CanstatError, LookupError):
    def __init__(self, scope: str, known: Iterable[str] = ()) -> None:
        self.scope = scope
        self.known = sorted(known)
        super().__init__(
            f"Unknown dataset scope {scope!r}; known scopes: {', '.join(self.known) or 'none'}"
        )


class RetrievalError(CanstatError):
    """Network failure, malformed payload, or identifier the source doesn't know."""

    def __init__(self, identifier: str, cause: BaseException | str) -> None:
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Failed to retrieve {identifier!r}: {cause}")


class UnknownUnit(CanstatError, ValueError):
    def __init__(self, unit_code: Any) -> None:
        self.unit_code = unit_code
        super().__init__(f"No scale rule for unit code {unit_code!r}")


class JoinKeyMismatch(CanstatError):
    def __init__(self, join_key: str, keys: Iterable[Any]) -> None:
        self.join_key = join_key
        self.keys = list(keys)
        preview = ", ".join(repr(k) for k in self.keys[:5])
        more = f" (+{len(self.keys) - 5} more)" if len(self.keys) > 5 else ""
        super().__init__(
            f"{len(self.keys)} value(s) of {join_key!r} have no reference match: {preview}{more}"
        )
