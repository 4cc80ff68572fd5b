"""Canonical studio roles and their privilege order.

Role names arrive from the CMS in many spellings ("Admin", "dev",
"contrib", ...).  Everything downstream works on canonical names only.

Roles (highest → lowest privilege):
    administrator: Full project access
    developer: Schema and deployment access
    editor: Create and publish content
    contributor: Draft content, no publishing
    viewer: Read-only access

Unknown role names are kept, lowercased, and rank below every canonical
role.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class Role(StrEnum):
    """Canonical studio roles."""

    ADMINISTRATOR = "administrator"
    DEVELOPER = "developer"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


#: Roles ordered from most to least privileged.
ROLE_HIERARCHY: tuple[Role, ...] = (
    Role.ADMINISTRATOR,
    Role.DEVELOPER,
    Role.EDITOR,
    Role.CONTRIBUTOR,
    Role.VIEWER,
)

#: Lowercase alias -> canonical role.
ROLE_ALIASES: dict[str, Role] = {
    "admin": Role.ADMINISTRATOR,
    "administrator": Role.ADMINISTRATOR,
    "dev": Role.DEVELOPER,
    "developer": Role.DEVELOPER,
    "editor": Role.EDITOR,
    "contrib": Role.CONTRIBUTOR,
    "contributor": Role.CONTRIBUTOR,
    "viewer": Role.VIEWER,
}

_UNKNOWN_RANK = len(ROLE_HIERARCHY)


def normalize(role: str) -> str:
    """Map *role* to its canonical name, or lowercase it if unknown.

    Total and pure: empty and whitespace-only input comes back as-is.
    """
    lowered = role.lower()
    canonical = ROLE_ALIASES.get(lowered)
    if canonical is None:
        return lowered
    return canonical.value


def role_rank(role: str) -> int:
    """Return the privilege rank of *role* (0 is highest).

    All unknown roles share the same, lowest rank.
    """
    normalized = normalize(role)
    for index, canonical in enumerate(ROLE_HIERARCHY):
        if canonical == normalized:
            return index
    return _UNKNOWN_RANK


def get_highest_priority(roles: Iterable[str]) -> str | None:
    """Return the most privileged canonical role present in *roles*.

    When no canonical role is present the first (normalized) entry is
    returned, and ``None`` for an empty input.
    """
    normalized = [normalize(r) for r in roles]
    for canonical in ROLE_HIERARCHY:
        if canonical.value in normalized:
            return canonical.value
    return normalized[0] if normalized else None


def is_canonical(role: str) -> bool:
    return normalize(role) in ROLE_HIERARCHY
