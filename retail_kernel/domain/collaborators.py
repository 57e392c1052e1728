"""
Contracts for collaborators owned outside the kernel.

The kernel needs two things it does not own: display names for the audit
fields of a transfer request, and a yes/no answer to "may this user act on
this store".  Both are Protocols so callers can plug in their own user
service or permission system.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from retail_kernel.exceptions import UserNotFoundError


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    firstname: str = ""
    lastname: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class UserDirectory(Protocol):
    """Resolves user ids to names.  Raises UserNotFoundError when unknown."""

    def fetch_user_by_user_id(self, user_id: str) -> UserRecord:
        ...


class StoreAccessPolicy(Protocol):
    """Decides whether ``user_id`` may perform ``action`` on ``store_id``."""

    def can_access(self, user_id: str, store_id: Any, action: str) -> bool:
        ...


class MappingUserDirectory:
    """In-memory directory, for tooling and tests."""

    def __init__(self, users: Mapping[str, UserRecord] | None = None):
        self._users: dict[str, UserRecord] = dict(users or {})

    def add(self, user_id: str, firstname: str = "", lastname: str = "") -> UserRecord:
        record = UserRecord(user_id=user_id, firstname=firstname, lastname=lastname)
        self._users[user_id] = record
        return record

    def fetch_user_by_user_id(self, user_id: str) -> UserRecord:
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotFoundError(user_id) from None
