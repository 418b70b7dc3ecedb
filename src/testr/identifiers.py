"""Hierarchical test identifiers.

An identifier names a tree node and carries its ancestry:

    <file token>::<suite>::...::<case>

Every node's identifier is its parent's identifier plus ``::<own name>``.
The file token is the absolute file path with ``/``, ``\\`` and ``:``
percent-escaped (``%`` itself is escaped first), so it never contains the
separator and can be turned back into the exact path.

Comparisons between identifiers, and between identifiers and file paths,
are case-insensitive: drive letters and file names may differ in case
between what a parser saw and what a framework reports.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

SEPARATOR = "::"

_TOKEN_ESCAPES = (
    ("%", "%25"),
    ("/", "%2F"),
    ("\\", "%5C"),
    (":", "%3A"),
)


@dataclass(frozen=True)
class DecodedId:
    """An identifier split into its file token and name segments."""

    file_token: str
    path_segments: tuple[str, ...] = field(default_factory=tuple)


def file_token_for(path: str) -> str:
    """Encode an absolute file path as an identifier file token."""
    token = path
    for raw, escaped in _TOKEN_ESCAPES:
        token = token.replace(raw, escaped)
    return token


def path_for_token(token: str) -> str:
    """Decode a file token back to the path it was made from."""
    path = token
    for raw, escaped in reversed(_TOKEN_ESCAPES):
        path = path.replace(escaped, raw).replace(escaped.lower(), raw)
    return path


def encode(ancestor_names: Sequence[str], file_token: str) -> str:
    """Join a file token and suite/case names into an identifier."""
    return SEPARATOR.join([file_token, *ancestor_names])


def decode(identifier: str) -> DecodedId:
    """Split an identifier into its file token and name segments."""
    parts = identifier.split(SEPARATOR)
    return DecodedId(file_token=parts[0], path_segments=tuple(parts[1:]))


def child_id(parent_id: str, name: str) -> str:
    """Identifier of a node named ``name`` below ``parent_id``."""
    return f"{parent_id}{SEPARATOR}{name}"


def to_name_pattern(identifier: str) -> str:
    """Project an identifier onto a space-joined test name.

    Returns an empty string for a file-level identifier. Callers treat an
    empty pattern as "no filter".
    """
    return " ".join(decode(identifier).path_segments)


def display_name(identifier: str) -> str:
    """Human-readable ``Suite > case`` label for log output."""
    return " > ".join(decode(identifier).path_segments)


def file_path_of(identifier: str) -> str:
    """File path an identifier belongs to."""
    return path_for_token(decode(identifier).file_token)


def ids_equal(a: str, b: str) -> bool:
    """Case-insensitive identifier equality."""
    return a.casefold() == b.casefold()


def prefixes(identifier: str) -> list[str]:
    """All ancestor identifiers of ``identifier``, outermost first, itself last."""
    parts = identifier.split(SEPARATOR)
    return [SEPARATOR.join(parts[: i + 1]) for i in range(len(parts))]


def same_file(a: str, b: str) -> bool:
    """Check whether two identifiers (or file tokens) point at the same file."""
    return decode(a).file_token.casefold() == decode(b).file_token.casefold()


def id_matches_prefix(identifier: str, prefix: str) -> bool:
    """Check whether ``prefix`` is ``identifier`` or one of its ancestors.

    Matching is per segment, so ``F::Math`` is a prefix of ``F::Math::adds``
    but not of ``F::Mathematics``.
    """
    id_parts = identifier.casefold().split(SEPARATOR)
    prefix_parts = prefix.casefold().split(SEPARATOR)
    return id_parts[: len(prefix_parts)] == prefix_parts
