"""Principal keys: whose Microsoft grant a credential record belongs to."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_PLUS_ONLY = re.compile(r"\+.*$")
_PLUS_AND_DOT = re.compile(r"\.|\+.*$")

# domain -> (pattern removed from the local part, canonical domain)
_NORMALIZABLE_PROVIDERS: dict[str, tuple[re.Pattern[str], str | None]] = {
    "gmail.com": (_PLUS_AND_DOT, None),
    "googlemail.com": (_PLUS_AND_DOT, "gmail.com"),
    "hotmail.com": (_PLUS_ONLY, None),
    "live.com": (_PLUS_AND_DOT, None),
    "outlook.com": (_PLUS_ONLY, None),
}


def normalize_email(email: str) -> str:
    """
    Normalize an email address so aliases of one mailbox share a key.

    Lower-cases the address and applies provider rules (dots and +tags for
    Gmail/Live, +tags for Hotmail/Outlook). Strings that are not a single
    ``local@domain`` pair come back stripped but otherwise unchanged.
    """
    if not isinstance(email, str):
        raise TypeError("normalize_email expects a string")

    lowered = email.strip().lower()
    parts = lowered.split("@")
    if len(parts) != 2:
        return email.strip()

    username, domain = parts
    rule = _NORMALIZABLE_PROVIDERS.get(domain)
    if rule is not None:
        pattern, alias_of = rule
        username = pattern.sub("", username)
        if alias_of:
            domain = alias_of
    return f"{username}@{domain}"


@dataclass(frozen=True)
class ByUserId:
    """Grant tied to an existing local user account."""

    user_id: str

    kind = "user"

    def __post_init__(self) -> None:
        clean = str(self.user_id).strip()
        if not clean:
            raise ValueError("user_id is required")
        object.__setattr__(self, "user_id", clean)

    @property
    def key(self) -> str:
        return self.user_id

    def __str__(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class ByEmail:
    """Grant where the Microsoft account itself is the identifier (plugin flow)."""

    email: str

    kind = "email"

    def __post_init__(self) -> None:
        if not self.email or "@" not in self.email:
            raise ValueError("A valid email address is required")
        object.__setattr__(self, "email", normalize_email(self.email))

    @property
    def key(self) -> str:
        return self.email

    def __str__(self) -> str:
        return f"email:{self.email}"


PrincipalKey = Union[ByUserId, ByEmail]


def principal_from_storage(kind: str, key: str) -> PrincipalKey:
    """Rebuild a principal key from its stored ``(kind, key)`` columns."""
    if kind == ByUserId.kind:
        return ByUserId(key)
    if kind == ByEmail.kind:
        return ByEmail(key)
    raise ValueError(f"Unknown principal kind: {kind!r}")


__all__ = [
    "ByUserId",
    "ByEmail",
    "PrincipalKey",
    "normalize_email",
    "principal_from_storage",
]
