"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the flow controller and the routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A persisted account in the credential store.

    password_salt is the bcrypt salt string generated at signup. bcrypt also
    embeds it in password_hash; the separate column keeps the record
    self-describing. Neither value ever leaves the server or reaches a log.

    email and last_ip are informational. last_ip is the client address seen at
    signup, without port.
    """

    username: str
    password_salt: str = ""
    password_hash: str = ""
    email: str = ""
    last_ip: str = ""
    id: int | None = None


@dataclass
class SessionPrincipal:
    """The authenticated identity attached to exactly one session.

    Both role flags start False at login and signup -- the store has no role
    columns. Only the settings page changes them, for the life of the session.
    """

    username: str
    is_admin: bool = False
    is_premium: bool = False
