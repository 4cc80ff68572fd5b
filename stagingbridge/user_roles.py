"""Role extraction from studio user payloads.

The CMS has shipped user roles in several shapes over time:

- absent / ``None``
- a comma-separated string (legacy)
- a list mixing plain strings, ``{"name": ...}`` objects and junk

Each list entry is first parsed into a :data:`RoleInput` variant, then
normalized.  The input user is never modified.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from stagingbridge.rbac import normalize


@dataclass(frozen=True)
class StrRole:
    """A bare role string."""

    value: str


@dataclass(frozen=True)
class NamedRole:
    """A role object exposing a usable ``name``."""

    value: str


class _Skip:
    def __repr__(self) -> str:
        return "SKIP"


#: Sentinel for entries that carry no usable role name.
SKIP: Final = _Skip()

RoleInput = StrRole | NamedRole | _Skip


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def parse_role_input(entry: Any) -> RoleInput:
    """Classify one entry of a user's role list."""
    if isinstance(entry, str):
        # Empty strings are skipped like {"name": ""}, unlike the legacy comma form.
        return StrRole(entry) if entry else SKIP
    if entry is None or isinstance(entry, (int, float, bool, list, tuple)):
        return SKIP
    name = _field(entry, "name")
    if isinstance(name, str) and name:
        return NamedRole(name)
    return SKIP


def extract_from_user(user: Any) -> list[str]:
    """Return the normalized role names carried by *user*.

    A comma-separated string keeps its order and duplicates; a list is
    filtered, normalized and then deduplicated keeping first occurrence.
    """
    if user is None:
        return []
    roles = _field(user, "roles")
    if not roles:
        return []

    if isinstance(roles, str):
        return [normalize(part.strip()) for part in roles.split(",")]

    if not isinstance(roles, Iterable) or isinstance(roles, Mapping):
        return []

    extracted: list[str] = []
    for entry in roles:
        parsed = parse_role_input(entry)
        if parsed is SKIP:
            continue
        extracted.append(normalize(parsed.value))

    # dict preserves insertion order
    return list(dict.fromkeys(extracted))


def has_role(user: Any, role: str) -> bool:
    """Check if *user* carries *role* (after normalization)."""
    return normalize(role) in extract_from_user(user)


def has_any_role(user: Any, roles: Iterable[str]) -> bool:
    """Check if *user* carries at least one of *roles*."""
    wanted = {normalize(r) for r in roles}
    return any(r in wanted for r in extract_from_user(user))
