"""
tests/test_flows.py -- Unit tests for the auth flow controller (auth/flows.py).

Covers:
  - signup then login; principals start without roles
  - signup failures: confirmation mismatch, username taken, bad username --
    none of them writes a record
  - login failures: unknown user and wrong password look identical
  - username validation short-circuits before the store is touched
  - logout, including with no session
  - update_settings: overwrite, idempotence, restricted mode, expired session,
    role checks against the principal held under the session lock
  - concurrent signups for one username: exactly one succeeds
"""

from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy import text

from auth.errors import AuthError, AuthLayerError, ForbiddenError, ValidationError
from auth.flows import AuthController
from auth.models import SessionPrincipal
from auth.session import MemorySessionStore, SessionCell
from auth.store import UserStore
from core.config import get_settings


def _signup(controller: AuthController, session: SessionCell, name: str = "alice", pw: str = "pw1"):
    return controller.signup(session, name, "a@x.com", pw, pw, client_ip="10.1.2.3:5555")


class TestSignupAndLogin:
    def test_signup_then_login(self, controller: AuthController, session: SessionCell) -> None:
        _signup(controller, session)
        controller.logout(session)
        principal = controller.login(session, "alice", "pw1")
        assert principal.username == "alice"
        assert session.get() == principal

    def test_signup_returns_fresh_principal(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        assert principal == SessionPrincipal(username="alice", is_admin=False, is_premium=False)
        assert session.get() == principal

    def test_login_never_carries_roles(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        controller.update_settings(session, principal, "alice", admin=True, premium=True)
        controller.logout(session)
        again = controller.login(session, "alice", "pw1")
        assert again.is_admin is False and again.is_premium is False

    def test_signup_stores_hash_and_ip_without_port(
        self, controller: AuthController, session: SessionCell, store: UserStore
    ) -> None:
        _signup(controller, session)
        user = store.lookup("alice")
        assert user.last_ip == "10.1.2.3"
        assert user.email == "a@x.com"
        assert user.password_hash != "pw1"
        assert user.password_hash.startswith(user.password_salt)

    def test_ipv6_client_address_is_kept_whole(self, controller: AuthController, session: SessionCell, store) -> None:
        controller.signup(session, "alice", "", "pw1", "pw1", client_ip="::1")
        assert store.lookup("alice").last_ip == "::1"

    def test_username_is_stripped(self, controller: AuthController, session: SessionCell, store) -> None:
        controller.signup(session, "  alice ", "", "pw1", "pw1")
        assert store.lookup("alice") is not None
        assert controller.login(session, " alice", "pw1").username == "alice"


class TestSignupFailures:
    def test_confirmation_mismatch_writes_nothing(
        self, controller: AuthController, session: SessionCell, store: UserStore
    ) -> None:
        with pytest.raises(ValidationError):
            controller.signup(session, "alice", "a@x.com", "pw1", "pw2")
        assert store.lookup("alice") is None
        assert session.get() is None

    def test_username_taken(self, controller: AuthController, sessions: MemorySessionStore, store: UserStore) -> None:
        _signup(controller, SessionCell(sessions), "bob", "pw")
        with pytest.raises(ValidationError) as exc_info:
            _signup(controller, SessionCell(sessions), "bob", "other")
        assert exc_info.value.code == "username_taken"
        assert exc_info.value.message == "Username already exists."
        # The first record is untouched.
        assert controller.login(SessionCell(sessions), "bob", "pw").username == "bob"

    def test_empty_password_rejected(self, controller: AuthController, session: SessionCell) -> None:
        with pytest.raises(ValidationError):
            controller.signup(session, "alice", "", "", "")

    def test_overlong_password_rejected(self, controller: AuthController, session: SessionCell) -> None:
        pw = "x" * 73
        with pytest.raises(ValidationError):
            controller.signup(session, "alice", "", pw, pw)

    @pytest.mark.parametrize("name", ["", "ab", "1alice", "al ice", "alice@x", "a" * 33])
    def test_invalid_username_never_touches_store(self, session: SessionCell, name: str) -> None:
        store = MagicMock(spec=UserStore)
        controller = AuthController(store)
        with pytest.raises(ValidationError):
            controller.signup(session, name, "", "pw1", "pw1")
        with pytest.raises(ValidationError):
            controller.login(session, name, "pw1")
        store.lookup.assert_not_called()
        store.insert.assert_not_called()


class TestLoginFailures:
    def test_unknown_and_wrong_password_are_indistinguishable(
        self, controller: AuthController, session: SessionCell
    ) -> None:
        _signup(controller, session)
        controller.logout(session)
        with pytest.raises(AuthError) as unknown:
            controller.login(session, "nobody", "x")
        with pytest.raises(AuthError) as wrong:
            controller.login(session, "alice", "wrongpw")
        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.code == wrong.value.code == "bad_credentials"
        assert str(unknown.value) == str(wrong.value) == "Incorrect username or password."
        # reason is for server logs only
        assert unknown.value.reason == "not_found"
        assert wrong.value.reason == "bad_credentials"

    def test_failed_login_does_not_start_a_session(self, controller: AuthController, session: SessionCell) -> None:
        with pytest.raises(AuthError):
            controller.login(session, "nobody", "x")
        assert session.handle is None

    def test_password_with_extra_suffix_is_rejected(self, controller: AuthController, session: SessionCell) -> None:
        pw = "x" * 72
        _signup(controller, session, pw=pw)
        controller.logout(session)
        with pytest.raises(AuthError):
            controller.login(session, "alice", pw + "anything")
        assert session.handle is None
        assert controller.login(session, "alice", pw).username == "alice"

    def test_malformed_stored_hash_is_bad_credentials(self, session: SessionCell) -> None:
        store = MagicMock(spec=UserStore)
        store.lookup.return_value = MagicMock(username="alice", password_hash="garbage")
        with pytest.raises(AuthError):
            AuthController(store).login(session, "alice", "pw1")


class TestLogout:
    def test_logout_ends_session(self, controller: AuthController, session: SessionCell) -> None:
        _signup(controller, session)
        controller.logout(session)
        assert session.get() is None
        assert controller.current(session) is None

    def test_logout_without_session_is_a_no_op(self, controller: AuthController, session: SessionCell) -> None:
        controller.logout(session)
        controller.logout(session)
        assert session.get() is None


class TestUpdateSettings:
    def test_overwrites_all_fields(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        updated = controller.update_settings(session, principal, "alice2", admin=True, premium=False)
        assert updated is principal
        assert principal == SessionPrincipal(username="alice2", is_admin=True, is_premium=False)
        assert session.get() == principal

    def test_is_idempotent(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        controller.update_settings(session, principal, "carol", admin=False, premium=True)
        once = session.get()
        controller.update_settings(session, principal, "carol", admin=False, premium=True)
        assert session.get() == once == principal

    def test_invalid_new_username(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        with pytest.raises(ValidationError):
            controller.update_settings(session, principal, "x", admin=True, premium=True)
        assert session.get() == SessionPrincipal(username="alice")

    def test_expired_session_is_unauthenticated(self, controller: AuthController, session: SessionCell) -> None:
        principal = _signup(controller, session)
        session.store.destroy(session.handle)
        with pytest.raises(ForbiddenError) as exc_info:
            controller.update_settings(session, principal, "alice", admin=False, premium=False)
        assert exc_info.value.authenticated is False
        assert principal.username == "alice"

    def test_restricted_mode_blocks_self_granted_roles(self, store: UserStore, session: SessionCell) -> None:
        settings = get_settings().model_copy(update={"self_service_roles": False})
        controller = AuthController(store, settings)
        principal = _signup(controller, session)
        with pytest.raises(ForbiddenError):
            controller.update_settings(session, principal, "alice", admin=True, premium=False)
        assert session.get().is_admin is False
        # renaming and keeping no roles is still fine
        controller.update_settings(session, principal, "alice3", admin=False, premium=False)
        assert session.get().username == "alice3"

    def test_restricted_mode_checks_roles_held_now_not_a_stale_copy(
        self, store: UserStore, session: SessionCell
    ) -> None:
        settings = get_settings().model_copy(update={"self_service_roles": False})
        controller = AuthController(store, settings)
        _signup(controller, session)
        session.replace(SessionPrincipal(username="alice", is_admin=True))
        stale = session.get()
        # another request on the same session drops admin
        controller.update_settings(session, session.get(), "alice", admin=False, premium=False)
        with pytest.raises(ForbiddenError) as exc_info:
            controller.update_settings(session, stale, "alice", admin=True, premium=False)
        assert exc_info.value.authenticated is True
        assert session.get().is_admin is False

    def test_self_grant_audit_uses_roles_held_now(
        self, controller: AuthController, session: SessionCell, caplog: pytest.LogCaptureFixture
    ) -> None:
        _signup(controller, session)
        session.replace(SessionPrincipal(username="alice", is_admin=True))
        stale = session.get()
        controller.update_settings(session, session.get(), "alice", admin=False, premium=False)
        with caplog.at_level(logging.WARNING, logger="authgate.auth"):
            controller.update_settings(session, stale, "alice", admin=True, premium=False)
        assert "granted themselves role(s): admin" in caplog.text


class TestConcurrentSignup:
    def test_exactly_one_of_two_racing_signups_wins(self, tmp_path) -> None:
        store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
        controller = AuthController(store)
        sessions = MemorySessionStore(expire_seconds=60)
        barrier = threading.Barrier(2)
        outcomes: list[object] = []
        lock = threading.Lock()

        def attempt(pw: str) -> None:
            barrier.wait()
            try:
                result = controller.signup(SessionCell(sessions), "bob", "", pw, pw)
            except AuthLayerError as exc:
                result = exc
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(pw,)) for pw in ("pw-a", "pw-b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        wins = [o for o in outcomes if isinstance(o, SessionPrincipal)]
        losses = [o for o in outcomes if isinstance(o, AuthLayerError)]
        assert len(wins) == 1
        assert len(losses) == 1
        with store.engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM users WHERE username = 'bob'")).scalar()
        assert count == 1
        store.close()
