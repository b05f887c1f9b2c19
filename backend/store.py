"""
Database access for users and journal entries.

Every query goes through ``RetryPolicy.run`` which retries transient
(rate limiting / connection capacity) failures with exponential back-off
and hands back a caller-chosen fallback once the attempts run out.
Anything that is not transient is raised as ``StoreError`` straight away.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy import func, inspect, select, text

from errors import CreationFailed, ErrorKind, StoreError
from models import JournalEntry, Mood, User

logger = logging.getLogger("emojournal.store")

LOGIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
LOGIN_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

# Postgres SQLSTATEs Neon returns while it is shedding load.
TRANSIENT_SQLSTATES = frozenset({
    "53000",  # insufficient_resources
    "53300",  # too_many_connections
    "53400",  # configuration_limit_exceeded
    "57P03",  # cannot_connect_now
})


def _sqlstate(error):
    orig = getattr(error, "orig", None)
    # psycopg2 exposes .pgcode, psycopg 3 exposes .sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def classify_error(error: Exception) -> ErrorKind:
    """Map a SQLAlchemy exception onto an ``ErrorKind``."""
    if isinstance(error, sa_exc.TimeoutError):
        # connection pool exhausted
        return ErrorKind.TRANSIENT
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated or _sqlstate(error) in TRANSIENT_SQLSTATES:
            return ErrorKind.TRANSIENT
        if isinstance(error, sa_exc.IntegrityError):
            return ErrorKind.CONFLICT
    return ErrorKind.FATAL


@dataclass
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** attempt

    def run(self, operation, fallback=None, session=None, label="store operation"):
        """
        Call ``operation`` until it succeeds, a non-transient error occurs,
        or the attempts are used up (then ``fallback`` is returned).
        """
        for attempt in range(self.attempts):
            try:
                return operation()
            except sa_exc.SQLAlchemyError as error:
                if session is not None:
                    session.rollback()
                kind = classify_error(error)
                if kind is not ErrorKind.TRANSIENT:
                    raise StoreError(kind, f"{label} failed: {error}", original=error) from error
                if attempt == self.attempts - 1:
                    logger.warning(
                        "%s still rate-limited after %d attempts, using fallback",
                        label, self.attempts,
                    )
                    return fallback
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s hit a transient error (attempt %d/%d), retrying in %.2fs",
                    label, attempt + 1, self.attempts, delay,
                )
                self.sleep(delay)
        return fallback


def generate_login_code() -> str:
    return "".join(secrets.choice(LOGIN_CODE_ALPHABET) for _ in range(LOGIN_CODE_LENGTH))


def normalize_login_code(code) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


def ensure_schema(database, retry: Optional[RetryPolicy] = None):
    """
    One-time migration: create missing tables and add the columns that
    older ``journal_entries`` tables (pre-accounts) do not have.
    Must run inside an application context.
    """
    retry = retry or RetryPolicy()
    retry.run(database.create_all, label="create tables")

    columns = {c["name"] for c in inspect(database.engine).get_columns("journal_entries")}
    statements = []
    if "user_id" not in columns:
        statements.append(
            "ALTER TABLE journal_entries ADD COLUMN user_id INTEGER REFERENCES users(id)"
        )
    if "mood_score" not in columns:
        statements.append("ALTER TABLE journal_entries ADD COLUMN mood_score FLOAT")

    for statement in statements:
        def _alter(statement=statement):
            with database.engine.begin() as conn:
                conn.execute(text(statement))
        retry.run(_alter, label="migrate journal_entries")
        logger.info("Applied migration: %s", statement)


class IdentityStore:
    """Users and their login codes."""

    def __init__(self, database, retry: Optional[RetryPolicy] = None,
                 code_factory: Callable[[], str] = generate_login_code):
        self.db = database
        self.retry = retry or RetryPolicy()
        self.code_factory = code_factory

    def _code_taken(self, code):
        session = self.db.session
        row = self.retry.run(
            lambda: session.execute(select(User.id).filter_by(login_code=code)).first(),
            fallback=None, session=session, label="login code lookup",
        )
        return row is not None

    def _insert(self, name, code):
        session = self.db.session
        user = User(name=name, login_code=code)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    def create_user(self, name) -> User:
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise CreationFailed("name must not be empty")

        session = self.db.session
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.code_factory()
            try:
                if self._code_taken(code):
                    logger.info("Login code collision, generating another")
                    continue
                user = self.retry.run(
                    lambda: self._insert(name, code),
                    fallback=None, session=session, label="user insert",
                )
            except StoreError as error:
                if error.kind is ErrorKind.CONFLICT:
                    # a concurrent signup took this code between check and insert
                    logger.info("Login code taken during insert, generating another")
                    continue
                raise CreationFailed("store failure during signup") from error
            if user is None:
                raise CreationFailed("user insert exhausted its retries")
            logger.info("Created user id=%s", user.id)
            return user

        raise CreationFailed(
            f"unable to generate a unique login code after {MAX_CODE_ATTEMPTS} attempts"
        )

    def find_by_login_code(self, code) -> Optional[User]:
        code = normalize_login_code(code)
        if not code:
            return None
        session = self.db.session
        return self.retry.run(
            lambda: session.execute(
                select(User).filter_by(login_code=code)
            ).scalar_one_or_none(),
            fallback=None, session=session, label="user lookup by code",
        )

    def find_by_id(self, user_id) -> Optional[User]:
        session = self.db.session
        return self.retry.run(
            lambda: session.get(User, user_id),
            fallback=None, session=session, label="user lookup by id",
        )

    def count(self) -> int:
        session = self.db.session
        return self.retry.run(
            lambda: session.execute(select(func.count(User.id))).scalar_one(),
            fallback=0, session=session, label="user count",
        )


class EntryStore:
    """Append-only journal entries, always scoped to one user."""

    def __init__(self, database, retry: Optional[RetryPolicy] = None):
        self.db = database
        self.retry = retry or RetryPolicy()

    def _insert(self, user_id, content, summary, mood, mood_score):
        session = self.db.session
        entry = JournalEntry(
            user_id=user_id,
            content=content,
            summary=summary,
            mood=mood,
            mood_score=mood_score,
        )
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry

    def insert(self, user_id, content, summary, mood, mood_score=None) -> Optional[JournalEntry]:
        """Persist an entry. Returns None when transient errors outlast the retries."""
        mood = Mood(mood).value
        return self.retry.run(
            lambda: self._insert(user_id, content, summary, mood, mood_score),
            fallback=None, session=self.db.session, label="entry insert",
        )

    def list_by_user(self, user_id, limit=50):
        session = self.db.session
        query = (
            select(JournalEntry)
            .where(JournalEntry.user_id == user_id)
            .order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc())
            .limit(limit)
        )
        return self.retry.run(
            lambda: list(session.execute(query).scalars()),
            fallback=[], session=session, label="entry list",
        )

    def verify(self, entry_id, user_id) -> Optional[JournalEntry]:
        """Read an entry back from the database, only if it belongs to ``user_id``."""
        session = self.db.session
        query = (
            select(JournalEntry)
            .where(JournalEntry.id == entry_id, JournalEntry.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return self.retry.run(
            lambda: session.execute(query).scalar_one_or_none(),
            fallback=None, session=session, label="entry verify",
        )

    def count(self, user_id=None) -> int:
        session = self.db.session
        query = select(func.count(JournalEntry.id))
        if user_id is not None:
            query = query.where(JournalEntry.user_id == user_id)
        return self.retry.run(
            lambda: session.execute(query).scalar_one(),
            fallback=0, session=session, label="entry count",
        )
