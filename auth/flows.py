"""
auth/flows.py -- Login, signup, logout and settings change.

AuthController is the only code that changes authentication state. Each
operation takes plain scalars plus the caller's SessionCell and either returns
a SessionPrincipal or raises one of the auth/errors.py exceptions -- nothing
is swallowed or replaced by a default here.

Session state machine:
  Anonymous --login/signup--> Authenticated --logout--> Anonymous
  Authenticated --update_settings--> Authenticated (same session)

Security:
  [C1] login() runs bcrypt even for unknown usernames (burn_dummy_check) and
       raises the same AuthError for "no such user" and "wrong password".
  Fresh principals never carry roles: the store has no role columns, so
       admin/premium only exist for the life of a session.
  update_settings() lets a signed-in user set their own role flags unless
       Settings.self_service_roles is False. Self-granted roles are logged at
       WARNING so they show up in an audit.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import AuthError, DuplicateUserError, ForbiddenError, ValidationError
from auth.models import SessionPrincipal, User
from auth.passwords import burn_dummy_check, hash_password, verify_password
from auth.session import SessionCell
from auth.store import UserStore
from auth.validation import validate_new_password, validate_username
from core.config import Settings, get_settings

logger = logging.getLogger("authgate.auth")

USERNAME_TAKEN = "Username already exists."


def _strip_port(address: str) -> str:
    """Drop a trailing :port from an IPv4 "host:port" string; leave IPv6 alone."""
    address = (address or "").strip()
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


class AuthController:
    """Orchestrates the credential store, password codec and session cell.

    Usage:
        controller = AuthController(UserStore())
        principal = controller.signup(session, "alice", "a@x.com", "pw1", "pw1", client_ip="10.0.0.1")
        controller.logout(session)
        principal = controller.login(session, "alice", "pw1")
    """

    def __init__(self, store: UserStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def current(self, session: SessionCell) -> SessionPrincipal | None:
        """Return the principal attached to the session, or None."""
        return session.get()

    def login(self, session: SessionCell, username: str, password: str) -> SessionPrincipal:
        name = validate_username(username, self.settings)
        user = self.store.lookup(name)
        if user is None:
            burn_dummy_check(password)  # [C1]
            logger.info("Login failed for %r: unknown user", name)
            raise AuthError("not_found")
        if not verify_password(password, user.password_hash):
            logger.info("Login failed for %r: bad password", name)
            raise AuthError("bad_credentials")

        principal = SessionPrincipal(username=user.username)
        session.attach(principal)
        logger.info("User %r logged in", user.username)
        return principal

    def signup(
        self,
        session: SessionCell,
        username: str,
        email: str,
        password: str,
        confirmation: str,
        client_ip: str = "",
    ) -> SessionPrincipal:
        name = validate_username(username, self.settings)
        validate_new_password(password, confirmation)
        if self.store.lookup(name) is not None:
            raise ValidationError(USERNAME_TAKEN, code="username_taken")

        digest = hash_password(password)
        user = User(
            username=name,
            password_salt=digest.salt,
            password_hash=digest.hash,
            email=(email or "").strip(),
            last_ip=_strip_port(client_ip),
        )
        try:
            self.store.insert(user)
        except DuplicateUserError as exc:
            # Lost a race with a concurrent signup for the same name.
            raise ValidationError(USERNAME_TAKEN, code="username_taken") from exc

        principal = SessionPrincipal(username=name)
        session.attach(principal)
        logger.info("User %r signed up", name)
        return principal

    def logout(self, session: SessionCell) -> None:
        """End the session. Calling it without a session does nothing."""
        principal = session.get()
        session.destroy()
        if principal is not None:
            logger.info("User %r logged out", principal.username)

    def update_settings(
        self,
        session: SessionCell,
        current: SessionPrincipal,
        new_username: str,
        admin: bool,
        premium: bool,
    ) -> SessionPrincipal:
        """Overwrite username and role flags on the current principal.

        Runs under the session's lock so concurrent submits on one session
        apply one after the other. Role checks use the principal as it stands
        inside the lock, not `current`, which the caller read earlier.
        Applying the same arguments twice leaves the same state as applying
        them once.
        """
        name = validate_username(new_username, self.settings)
        with session.locked():
            held = session.get()
            if held is None:
                raise ForbiddenError(authenticated=False)
            if not self.settings.self_service_roles:
                if (admin and not held.is_admin) or (premium and not held.is_premium):
                    raise ForbiddenError("Roles cannot be self-assigned.", authenticated=True)
            granted = [
                role
                for role, wanted, had in (("admin", admin, held.is_admin), ("premium", premium, held.is_premium))
                if wanted and not had
            ]
            updated = SessionPrincipal(username=name, is_admin=bool(admin), is_premium=bool(premium))
            if not session.replace(updated):
                # The session expired or was logged out by a concurrent request.
                raise ForbiddenError(authenticated=False)
            current.username = updated.username
            current.is_admin = updated.is_admin
            current.is_premium = updated.is_premium
        if granted:
            logger.warning("User %r granted themselves role(s): %s", name, ", ".join(granted))
        return current
