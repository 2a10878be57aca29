"""
Verification session state machine.

A verification session binds a requested report (company + number of
years) and an optional requested recipient identity to the identity
returned by an external login. A report may be released from a session
iff::

    not expired
    and not claimed by a release in progress
    and verified
    and (requested_identity is None
         or verified_identity == requested_identity, case-insensitively)

Sessions are immutable records. Every state change replaces the record
in the store under the store lock, so a bind is observed by every later
``is_authorized``/``consume`` call. The lock only guards the mapping
itself and is never held across I/O or logging.

A release claims its session first. While claimed, the session authorizes
no further release; the claim is dropped again if the release fails and
the session is removed once it succeeded.

Expiry is checked on access; expired sessions are swept opportunistically
whenever a new session is initiated. A removed or expired session is
never resurrected.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from reportvault.app.errors import UnauthorizedError


logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(minutes=10)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclasses.dataclass(frozen=True)
class VerificationSession:
    """Immutable snapshot of one verification request."""

    session_id: str
    cui: str
    years: int
    requested_identity: Optional[str]
    created_at: datetime
    expires_at: datetime
    verified: bool = False
    verified_identity: Optional[str] = None
    claimed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def identity_matches(self) -> bool:
        if self.requested_identity is None:
            return True
        return (
            self.verified_identity is not None
            and self.verified_identity.casefold()
            == self.requested_identity.casefold()
        )

    def authorizes_release(self, now: datetime) -> bool:
        return (
            not self.is_expired(now)
            and not self.claimed
            and self.verified
            and self.identity_matches
        )


@dataclasses.dataclass(frozen=True)
class SessionSnapshot:
    """What an authorized session releases: the report parameters and recipient."""

    session_id: str
    cui: str
    years: int
    verified_identity: str


def _parse_session_id(session_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(session_id))
    except (ValueError, AttributeError, TypeError):
        return None


class VerificationSessionManager:
    """
    Process-scoped, thread-safe store of pending verification sessions.

    One instance is created at application startup and shared by all
    request handlers. Tests create their own instances with an injected
    clock.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        allow_rebind: bool = True,
        clock: Optional[Clock] = None,
    ):
        self._ttl = ttl
        self._allow_rebind = allow_rebind
        self._clock: Clock = clock or _utcnow

        self._sessions: Dict[uuid.UUID, VerificationSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initiate(
        self,
        cui: str,
        years: int,
        requested_identity: Optional[str] = None,
    ) -> str:
        """Create a session and return its opaque identifier."""
        self._cleanup_expired()

        key = uuid.uuid4()
        now = self._clock()
        session = VerificationSession(
            session_id=str(key),
            cui=cui,
            years=years,
            requested_identity=(
                requested_identity.strip() if requested_identity else None
            ),
            created_at=now,
            expires_at=now + self._ttl,
        )

        with self._lock:
            self._sessions[key] = session

        logger.info(
            "Created verification session %s for CUI: %s (%s)",
            session.session_id,
            cui,
            "requested identity provided"
            if session.requested_identity
            else "no requested identity",
        )
        return session.session_id

    def bind(self, session_id: str, login_identity: str) -> bool:
        """
        Bind the identity returned by the login provider to a session.

        Returns whether the bound identity matches the requested one. A
        missing or expired session yields ``False`` and is left unchanged
        (expired sessions are removed).
        """
        key = _parse_session_id(session_id)
        if key is None:
            logger.warning("Invalid session ID format: %s", session_id)
            return False

        identity = (login_identity or "").strip()
        if not identity:
            logger.warning("Empty login identity for session %s", session_id)
            return False

        now = self._clock()
        outcome = "bound"

        with self._lock:
            session = self._sessions.get(key)

            if session is None:
                outcome = "not_found"
            elif session.is_expired(now):
                del self._sessions[key]
                outcome = "expired"
            elif (
                session.verified
                and not self._allow_rebind
                and session.verified_identity is not None
                and session.verified_identity.casefold() != identity.casefold()
            ):
                outcome = "rebind_rejected"
            else:
                session = dataclasses.replace(
                    session,
                    verified=True,
                    verified_identity=identity,
                )
                self._sessions[key] = session

        if outcome == "not_found":
            logger.warning("Session not found: %s", session_id)
            return False
        if outcome == "expired":
            logger.warning("Session expired: %s", session_id)
            return False
        if outcome == "rebind_rejected":
            logger.warning(
                "Rejected re-binding of verified session %s to a different identity",
                session_id,
            )
            return False

        matches = session.identity_matches
        logger.info(
            "Identity verification for session %s: requested=%s, verified=%s, matches=%s",
            session_id,
            session.requested_identity,
            identity,
            matches,
        )
        return matches

    def is_authorized(self, session_id: str) -> bool:
        """Point-in-time authorization check. Never mutates the store."""
        key = _parse_session_id(session_id)
        if key is None:
            logger.warning("Invalid session ID format: %s", session_id)
            return False

        with self._lock:
            session = self._sessions.get(key)

        return session is not None and session.authorizes_release(self._clock())

    def get_session(self, session_id: str) -> Optional[VerificationSession]:
        """
        Return the current session record, or ``None``.

        An expired session is removed as a side effect.
        """
        key = _parse_session_id(session_id)
        if key is None:
            logger.warning("Invalid session ID format: %s", session_id)
            return None

        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is not None and session.is_expired(now):
                del self._sessions[key]
                session = None
        return session

    def consume(self, session_id: str) -> SessionSnapshot:
        """
        Return the release parameters of an authorized session.

        The session is not removed; callers remove it explicitly once the
        release has completed.

        Raises:
            UnauthorizedError:
                For any session that does not authorize a release,
                including unknown and malformed identifiers.
        """
        key = _parse_session_id(session_id)
        if key is None:
            raise UnauthorizedError()

        with self._lock:
            session = self._sessions.get(key)

        if session is None or not session.authorizes_release(self._clock()):
            raise UnauthorizedError()

        return SessionSnapshot(
            session_id=session.session_id,
            cui=session.cui,
            years=session.years,
            verified_identity=session.verified_identity,
        )

    def claim(self, session_id: str) -> SessionSnapshot:
        """
        Atomically take an authorized session for one release.

        Exactly one of several concurrent claims on the same session
        succeeds. The claimed session stays in the store until the caller
        either removes it or hands it back with :meth:`release_claim`.

        Raises:
            UnauthorizedError:
                For any session that does not authorize a release,
                including one that is already claimed.
        """
        key = _parse_session_id(session_id)
        if key is None:
            raise UnauthorizedError()

        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is None or not session.authorizes_release(now):
                session = None
            else:
                self._sessions[key] = dataclasses.replace(session, claimed=True)

        if session is None:
            raise UnauthorizedError()

        logger.info("Claimed session %s for release", session_id)
        return SessionSnapshot(
            session_id=session.session_id,
            cui=session.cui,
            years=session.years,
            verified_identity=session.verified_identity,
        )

    def release_claim(self, session_id: str) -> None:
        """Hand a claimed session back so the release can be retried."""
        key = _parse_session_id(session_id)
        if key is None:
            return

        with self._lock:
            session = self._sessions.get(key)
            if session is not None and session.claimed:
                self._sessions[key] = dataclasses.replace(session, claimed=False)

        logger.info("Released claim on session %s", session_id)

    def remove(self, session_id: str) -> None:
        """Delete a session. Removing an unknown session is a no-op."""
        key = _parse_session_id(session_id)
        if key is None:
            logger.warning("Invalid session ID format for cleanup: %s", session_id)
            return

        with self._lock:
            self._sessions.pop(key, None)

        logger.info("Cleaned up session: %s", session_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def active_session_count(self) -> int:
        self._cleanup_expired()
        with self._lock:
            return len(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def _cleanup_expired(self) -> None:
        now = self._clock()
        with self._lock:
            expired = [
                key for key, session in self._sessions.items()
                if session.is_expired(now)
            ]
            for key in expired:
                del self._sessions[key]

        for key in expired:
            logger.debug("Removing expired session: %s", key)
