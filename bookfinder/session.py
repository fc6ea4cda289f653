"""User accounts and the process-wide login session.

``UserStore`` owns the ``users`` table. ``SessionManager`` holds at most one
authenticated ``User`` and persists it to a small JSON file so the session
survives restarts; the file is read once, in ``init()``.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from bookfinder.book import User
from bookfinder.catalog import normalize_email
from bookfinder.config import settings
from bookfinder.database import get_db_connection, initialize_database
from bookfinder.errors import (
    AuthError,
    AuthErrorReason,
    NotFoundError,
    SessionRequiredError,
)
from bookfinder.security import hash_password, verify_password
from bookfinder.validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row: sqlite3.Row) -> User:
    return User(id=row["id"], name=row["name"], email=row["email"], created_at=row["created_at"])


class UserStore:
    """Credential store backed by the ``users`` table."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file
        initialize_database(db_file)

    def _fetch(self, email: str) -> Optional[Tuple[User, str]]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT id, name, email, password_hash, created_at FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
            if row is None:
                return None
            return _row_to_user(row), row["password_hash"]
        finally:
            conn.close()

    def find_by_email(self, email: str) -> Optional[User]:
        found = self._fetch(email)
        return found[0] if found else None

    def get(self, user_id: int) -> User:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT id, name, email, created_at FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"User {user_id} not found.")
        return _row_to_user(row)

    def create(self, name: str, email: str, password: str) -> User:
        """Insert a new user. Raises ``AuthError(ALREADY_REGISTERED)`` on a taken email."""
        email = normalize_email(email)
        created_at = _utcnow()
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "INSERT INTO users (name, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                (name, email, hash_password(password), created_at),
            )
            conn.commit()
            user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise AuthError(AuthErrorReason.ALREADY_REGISTERED) from e
        finally:
            conn.close()
        return User(id=user_id, name=name, email=email, created_at=created_at)

    def authenticate(self, email: str, password: str) -> User:
        """Return the user whose credentials match, else ``AuthError(INVALID_CREDENTIALS)``."""
        found = self._fetch(email)
        if found is None:
            raise AuthError(AuthErrorReason.INVALID_CREDENTIALS)
        user, password_hash = found
        if not verify_password(password, password_hash):
            raise AuthError(AuthErrorReason.INVALID_CREDENTIALS)
        return user

    def update(self, user_id: int, name: str, email: str, password: Optional[str] = None) -> User:
        """Update a profile. Book entries follow the owner when the email changes."""
        current = self.get(user_id)
        email = normalize_email(email)
        conn = get_db_connection(self.db_file)
        try:
            if password:
                conn.execute(
                    "UPDATE users SET name = ?, email = ?, password_hash = ? WHERE id = ?",
                    (name, email, hash_password(password), user_id),
                )
            else:
                conn.execute(
                    "UPDATE users SET name = ?, email = ? WHERE id = ?",
                    (name, email, user_id),
                )
            if email != current.email:
                conn.execute(
                    "UPDATE book_entries SET owner_email = ? WHERE owner_email = ?",
                    (email, current.email),
                )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise AuthError(AuthErrorReason.ALREADY_REGISTERED) from e
        finally:
            conn.close()
        return User(id=user_id, name=name, email=email, created_at=current.created_at)


class SessionManager:
    """Holds the authenticated identity for the lifetime of the process.

    Call ``init()`` once at startup to restore a persisted session and
    ``teardown()`` on shutdown. The manager is injected into the library
    store and the HTTP/CLI surfaces; there is no module-level instance.
    """

    def __init__(self, users: UserStore, session_file: Optional[str] = None) -> None:
        self.users = users
        self.session_file = Path(session_file or settings.session_file).expanduser()
        self._user: Optional[User] = None
        self._initialized = False

    # ------------------------- Lifecycle ------------------------- #
    def init(self) -> Optional[User]:
        """Restore the persisted session. Only the first call reads the file."""
        if self._initialized:
            return self._user
        self._initialized = True
        self._user = self._load()
        if self._user:
            logger.info(f"Session restored for {self._user.email}")
        return self._user

    def teardown(self) -> None:
        """Forget the in-memory session. The persisted file is kept for the next start."""
        self._user = None
        self._initialized = False

    # ------------------------- Operations ------------------------- #
    def login(self, email: str, password: str) -> User:
        email = normalize_email(email)
        try:
            user = self.users.authenticate(email, password)
        except AuthError:
            logger.info(f"Failed login for {email}")
            raise
        self._establish(user)
        return user

    def register(self, name: str, email: str, password: str) -> User:
        email = EmailValidator.require(email)
        password = TextValidator.require_password(password)
        # Without a name the local part of the email is used
        name = (name or "").strip() or email.split("@")[0]
        if self.users.find_by_email(email):
            raise AuthError(AuthErrorReason.ALREADY_REGISTERED)
        user = self.users.create(name, email, password)
        logger.info(f"Registered {email}")
        self._establish(user)
        return user

    def logout(self) -> None:
        if self._user:
            logger.info(f"Logged out {self._user.email}")
        self._user = None
        try:
            self.session_file.unlink()
        except FileNotFoundError:
            pass

    def current_user(self) -> Optional[User]:
        return self._user

    def require_user(self) -> User:
        """Return the session user; a missing session is a programming error."""
        if self._user is None:
            raise SessionRequiredError("This operation requires a logged-in user.")
        return self._user

    def update_profile(
        self,
        name: str,
        email: str,
        password: Optional[str] = None,
        confirm_password: Optional[str] = None,
    ) -> User:
        user = self.require_user()
        name = TextValidator.require_name(name)
        email = EmailValidator.require(email)
        if password:
            TextValidator.require_matching(password, confirm_password)
        if email != user.email:
            other = self.users.find_by_email(email)
            if other and other.id != user.id:
                raise AuthError(AuthErrorReason.ALREADY_REGISTERED)
        updated = self.users.update(user.id, name, email, password or None)
        self._establish(updated)
        return updated

    # ------------------------- Persistence ------------------------- #
    def _establish(self, user: User) -> None:
        self._user = user
        self._initialized = True
        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        self.session_file.write_text(json.dumps(user.to_dict(), indent=2) + "\n", encoding="utf-8")

    def _load(self) -> Optional[User]:
        if not self.session_file.exists():
            return None
        try:
            saved = User.from_dict(json.loads(self.session_file.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.session_file}: {e}")
            return None

        # The account may have been changed or removed since the file was written
        user = self.users.find_by_email(saved.email)
        if user is None or user.id != saved.id:
            logger.warning(f"Persisted session for {saved.email} no longer matches a user")
            return None
        return user
