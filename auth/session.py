"""
auth/session.py -- Server-side session store and signed session handles.

A session is an opaque random handle mapped to at most one SessionPrincipal.
The handle is the only thing the browser holds: it travels in an httpOnly
cookie signed with itsdangerous so a tampered or foreign handle is rejected
before the store is consulted. The principal itself never leaves the server.

MemorySessionStore is owned by the application (app.state.sessions) and is
passed explicitly into every operation through a SessionCell -- there is no
module-level store.

Store contract (the only operations the auth layer relies on):
  attach(handle, principal)   -- bind a principal to a handle
  read(handle)                -- principal or None (unknown / expired)
  replace(handle, principal)  -- overwrite the principal of a live session
  destroy(handle)             -- forget the session; unknown handles are fine

Concurrency:
  One threading.Lock per session serialises read-modify-write on that session
  (SessionCell.locked()). A store-wide lock guards only the handle map, so two
  different sessions never wait on each other's updates.

Expiry: a session idles out after Settings.session_expire_seconds without a
read. An expired session reads as None -- there is no separate expired state.
Expired entries are dropped when read and swept on every create(). The
application lifespan also calls purge_expired() on a timer.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from dataclasses import replace as _copy

from itsdangerous import BadSignature, URLSafeTimedSerializer

from auth.models import SessionPrincipal
from core.config import get_settings

logger = logging.getLogger("authgate.auth")

_settings = get_settings()

SESSION_SALT = "authgate.session.v1"


# ---------------------------------------------------------------------------
# Signed handles
# ---------------------------------------------------------------------------


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=_settings.secret_key, salt=SESSION_SALT)


def sign_handle(handle: str) -> str:
    return _serializer().dumps(handle)


def unsign_handle(token: str | None) -> str | None:
    """Return the handle inside a signed cookie value, or None if invalid or expired."""
    if not token:
        return None
    try:
        handle = _serializer().loads(token, max_age=_settings.session_expire_seconds)
    except BadSignature:
        # BadTimeSignature and SignatureExpired are both BadSignature subclasses.
        return None
    return handle if isinstance(handle, str) and handle else None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass
class _Entry:
    principal: SessionPrincipal | None
    last_seen: float
    lock: threading.Lock = field(default_factory=threading.Lock)


class MemorySessionStore:
    """In-process session store with per-session locks and idle expiry."""

    def __init__(self, expire_seconds: int | None = None) -> None:
        self.expire_seconds = expire_seconds or _settings.session_expire_seconds
        self._entries: dict[str, _Entry] = {}
        self._map_lock = threading.Lock()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.last_seen > self.expire_seconds

    def _live_entry(self, handle: str | None) -> _Entry | None:
        # Caller holds _map_lock.
        if not handle:
            return None
        entry = self._entries.get(handle)
        if entry is None:
            return None
        now = time.monotonic()
        if self._expired(entry, now):
            del self._entries[handle]
            logger.debug("Session expired")
            return None
        entry.last_seen = now
        return entry

    def _sweep(self) -> int:
        # Caller holds _map_lock.
        now = time.monotonic()
        stale = [handle for handle, entry in self._entries.items() if self._expired(entry, now)]
        for handle in stale:
            del self._entries[handle]
        return len(stale)

    def purge_expired(self) -> int:
        """Drop every idle-expired session and return how many were removed."""
        with self._map_lock:
            removed = self._sweep()
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed

    def create(self) -> str:
        """Start an empty session and return its new random handle.

        Expired sessions are swept first.
        """
        handle = secrets.token_urlsafe(32)
        with self._map_lock:
            self._sweep()
            self._entries[handle] = _Entry(principal=None, last_seen=time.monotonic())
        return handle

    def attach(self, handle: str, principal: SessionPrincipal) -> None:
        with self._map_lock:
            entry = self._live_entry(handle)
            if entry is None:
                self._entries[handle] = _Entry(principal=_copy(principal), last_seen=time.monotonic())
            else:
                entry.principal = _copy(principal)

    def read(self, handle: str | None) -> SessionPrincipal | None:
        """Return a copy of the session's principal so callers never share state."""
        with self._map_lock:
            entry = self._live_entry(handle)
            if entry is None or entry.principal is None:
                return None
            return _copy(entry.principal)

    def replace(self, handle: str | None, principal: SessionPrincipal) -> bool:
        """Overwrite the principal of a live session. Returns False if the session is gone."""
        with self._map_lock:
            entry = self._live_entry(handle)
            if entry is None:
                return False
            entry.principal = _copy(principal)
            return True

    def destroy(self, handle: str | None) -> None:
        if not handle:
            return
        with self._map_lock:
            self._entries.pop(handle, None)

    def lock_for(self, handle: str | None) -> threading.Lock | None:
        with self._map_lock:
            entry = self._live_entry(handle)
            return entry.lock if entry is not None else None

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Per-request view of one session
# ---------------------------------------------------------------------------


class SessionCell:
    """One request's handle on its session: a mutable cell holding a principal.

    `handle` is None until a session is started. `handle_changed` tells the
    HTTP layer that the cookie must be (re)issued or cleared.
    """

    def __init__(self, store: MemorySessionStore, handle: str | None = None) -> None:
        self.store = store
        self.handle = handle
        self.handle_changed = False

    def get(self) -> SessionPrincipal | None:
        return self.store.read(self.handle)

    def attach(self, principal: SessionPrincipal) -> None:
        """Bind `principal` to a brand-new session, discarding any previous one.

        Rotating the handle on every sign-in prevents session fixation.
        """
        self.store.destroy(self.handle)
        self.handle = self.store.create()
        self.store.attach(self.handle, principal)
        self.handle_changed = True

    def replace(self, principal: SessionPrincipal) -> bool:
        return self.store.replace(self.handle, principal)

    def destroy(self) -> None:
        if self.handle is None:
            return
        self.store.destroy(self.handle)
        self.handle = None
        self.handle_changed = True

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold this session's lock for a read-modify-write. No-op without a session."""
        lock = self.store.lock_for(self.handle)
        if lock is None:
            yield
            return
        with lock:
            yield
