"""Session-based authentication.

Passwords are stored as salted PBKDF2 hashes in the form
``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>``. Sessions are kept
server side so that logging out revokes them immediately.
"""

import hashlib
import hmac
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml

from mdwiki.config import Settings
from mdwiki.core.errors import InvalidCredentialsError, UnauthenticatedError
from mdwiki.core.models import Identity, Session

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 390_000


def hash_password(
    password: str, *, salt: bytes | None = None, iterations: int = DEFAULT_ITERATIONS
) -> str:
    """Hash a password for storage in the credential store."""
    salt = salt if salt is not None else secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Check a password against a stored hash in constant time."""
    try:
        algorithm, iterations, salt, expected = stored.split("$")
        if algorithm != HASH_ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt), int(iterations)
        )
        return hmac.compare_digest(digest, bytes.fromhex(expected))
    except ValueError:
        return False


class CredentialStore:
    """Username to password hash lookup.

    Users come from the ``users`` setting and, if configured, a YAML file
    holding either a plain mapping or a mapping under a ``users`` key.
    """

    def __init__(self, users: Mapping[str, str] | None = None):
        self._users: dict[str, str] = dict(users or {})
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialStore":
        store = cls(settings.users)
        if settings.users_file is not None:
            store.load_file(settings.users_file)
        return store

    def load_file(self, path: Path) -> None:
        """Merge users from a YAML file."""
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping of users")
        users = data.get("users", data)
        for username, password_hash in users.items():
            if not isinstance(password_hash, str):
                raise ValueError(f"{path}: password hash for {username!r} must be a string")
            self._users[str(username)] = password_hash
        logger.info("Loaded %d user(s) from %s", len(users), path)

    def __contains__(self, username: str) -> bool:
        return username in self._users

    def __len__(self) -> int:
        return len(self._users)

    def verify(self, username: str, password: str) -> bool:
        stored = self._users.get(username)
        if stored is None:
            # Unknown users cost one hash computation, same as known ones.
            if self._dummy_hash is None:
                self._dummy_hash = hash_password(secrets.token_hex(8))
            verify_password(password, self._dummy_hash)
            return False
        return verify_password(password, stored)


class SessionStore(ABC):
    """Storage for issued sessions."""

    @abstractmethod
    def save(self, session: Session) -> None: ...

    @abstractmethod
    def get(self, token: str) -> Session | None: ...

    @abstractmethod
    def delete(self, token: str) -> None: ...

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int:
        """Drop expired sessions. Returns how many were removed."""
        ...

    @abstractmethod
    def clear(self) -> None: ...


class InMemorySessionStore(SessionStore):
    """Process-local session store."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def save(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.token] = session

    def get(self, token: str) -> Session | None:
        with self._lock:
            return self._sessions.get(token)

    def delete(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def cleanup_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Authenticator:
    """Issues, validates and revokes sessions."""

    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionStore,
        ttl: timedelta = timedelta(days=1),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.credentials = credentials
        self.sessions = sessions
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "Authenticator":
        return cls(
            CredentialStore.from_settings(settings),
            InMemorySessionStore(),
            ttl=timedelta(seconds=settings.session_ttl),
        )

    def login(self, username: str, password: str) -> Session:
        """Verify credentials and issue a new session."""
        if not self.credentials.verify(username, password):
            logger.warning("Failed login for %r", username)
            raise InvalidCredentialsError()

        now = self.clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            username=username,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.sessions.save(session)
        removed = self.sessions.cleanup_expired(now)
        if removed:
            logger.debug("Dropped %d expired session(s)", removed)
        logger.info("User %s logged in", username)
        return session

    def authenticate(self, token: str | None) -> Identity:
        """Return the identity behind a session token.

        Missing, unknown, expired and revoked tokens all fail the same way.
        """
        session = self.sessions.get(token) if token else None
        if session is None:
            raise UnauthenticatedError()
        if session.is_expired(self.clock()):
            self.sessions.delete(session.token)
            raise UnauthenticatedError()
        if session.username not in self.credentials:
            # User removed from the credential store since login
            self.sessions.delete(session.token)
            raise UnauthenticatedError()
        return Identity(username=session.username)

    def logout(self, token: str | None) -> None:
        """Revoke a session. Unknown tokens are ignored."""
        if not token:
            return
        session = self.sessions.get(token)
        self.sessions.delete(token)
        if session is not None:
            logger.info("User %s logged out", session.username)
