"""Tests for the identity/entry stores, retry policy and schema migration."""

import re
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import inspect, text

from app import create_app
from errors import CreationFailed, ErrorKind, StoreError
from models import db
from store import (
    LOGIN_CODE_ALPHABET,
    MAX_CODE_ATTEMPTS,
    IdentityStore,
    RetryPolicy,
    classify_error,
    ensure_schema,
    generate_login_code,
)

from conftest import TEST_CONFIG


class FakeDriverError(Exception):
    def __init__(self, pgcode=None):
        super().__init__(f"driver error {pgcode}")
        self.pgcode = pgcode


def transient_error():
    return sa_exc.OperationalError("SELECT 1", {}, FakeDriverError("53300"))


def fatal_error():
    return sa_exc.ProgrammingError("SELECT 1", {}, FakeDriverError("42P01"))


def _codes(*codes):
    it = iter(codes)
    return lambda: next(it)


class TestLoginCodes:
    def test_format(self):
        for _ in range(200):
            code = generate_login_code()
            assert len(code) == 6
            assert re.fullmatch(r"[A-Z0-9]{6}", code)

    def test_alphabet(self):
        assert len(LOGIN_CODE_ALPHABET) == 36


class TestClassifyError:
    def test_rate_limit_sqlstates_are_transient(self):
        for code in ("53000", "53300", "53400", "57P03"):
            err = sa_exc.OperationalError("q", {}, FakeDriverError(code))
            assert classify_error(err) is ErrorKind.TRANSIENT

    def test_invalidated_connection_is_transient(self):
        err = sa_exc.OperationalError("q", {}, FakeDriverError(), connection_invalidated=True)
        assert classify_error(err) is ErrorKind.TRANSIENT

    def test_pool_timeout_is_transient(self):
        assert classify_error(sa_exc.TimeoutError("pool exhausted")) is ErrorKind.TRANSIENT

    def test_integrity_error_is_conflict(self):
        err = sa_exc.IntegrityError("INSERT", {}, FakeDriverError("23505"))
        assert classify_error(err) is ErrorKind.CONFLICT

    def test_other_errors_are_fatal(self):
        assert classify_error(fatal_error()) is ErrorKind.FATAL

    def test_message_text_is_not_inspected(self):
        err = sa_exc.OperationalError("q", {}, Exception("429 Too Many Requests: rate limit"))
        assert classify_error(err) is ErrorKind.FATAL


class TestRetryPolicy:
    def test_returns_first_success(self, retry, sleeps):
        assert retry.run(lambda: "ok") == "ok"
        assert sleeps == []

    def test_retries_transient_with_exponential_backoff(self, retry, sleeps):
        operation = MagicMock(side_effect=[transient_error(), transient_error(), "ok"])
        assert retry.run(operation, fallback="fallback") == "ok"
        assert operation.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_exhausted_returns_fallback(self, retry, sleeps):
        operation = MagicMock(side_effect=transient_error())
        assert retry.run(operation, fallback=[]) == []
        assert operation.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_fatal_error_raises_without_retry(self, retry, sleeps):
        operation = MagicMock(side_effect=fatal_error())
        with pytest.raises(StoreError) as excinfo:
            retry.run(operation, fallback=None)
        assert excinfo.value.kind is ErrorKind.FATAL
        assert operation.call_count == 1
        assert sleeps == []

    def test_rolls_back_session_after_each_failure(self, retry):
        session = MagicMock()
        operation = MagicMock(side_effect=[transient_error(), "ok"])
        retry.run(operation, session=session)
        session.rollback.assert_called_once()

    def test_non_database_errors_pass_through(self, retry):
        with pytest.raises(KeyError):
            retry.run(MagicMock(side_effect=KeyError("x")))

    def test_delay_schedule(self):
        policy = RetryPolicy(attempts=4, base_delay=0.5)
        assert [policy.delay_for(i) for i in range(3)] == [0.5, 1.0, 2.0]


class TestIdentityStore:
    def test_create_user(self, users):
        user = users.create_user("  Alice  ")
        assert user.id is not None
        assert user.name == "Alice"
        assert re.fullmatch(r"[A-Z0-9]{6}", user.login_code)
        assert user.created_at is not None

    def test_blank_name_rejected(self, users):
        with pytest.raises(CreationFailed):
            users.create_user("   ")

    def test_regenerates_on_collision(self, app, retry):
        IdentityStore(db, retry, code_factory=_codes("AAAAAA")).create_user("First")
        factory = MagicMock(side_effect=["AAAAAA", "AAAAAA", "BBBBBB"])
        second = IdentityStore(db, retry, code_factory=factory).create_user("Second")

        assert second.login_code == "BBBBBB"
        assert factory.call_count == 3

    def test_gives_up_after_attempt_budget(self, app, retry):
        IdentityStore(db, retry, code_factory=_codes("AAAAAA")).create_user("First")
        factory = MagicMock(return_value="AAAAAA")
        store = IdentityStore(db, retry, code_factory=factory)

        with pytest.raises(CreationFailed):
            store.create_user("Second")
        assert factory.call_count == MAX_CODE_ATTEMPTS

    def test_unique_violation_on_insert_counts_as_collision(self, app, retry):
        IdentityStore(db, retry, code_factory=_codes("AAAAAA")).create_user("First")
        store = IdentityStore(db, retry, code_factory=_codes("AAAAAA", "CCCCCC"))

        # Simulate another signup claiming the code between check and insert.
        with patch.object(store, "_code_taken", return_value=False):
            user = store.create_user("Racer")
        assert user.login_code == "CCCCCC"

    def test_codes_unique_across_many_users(self, users):
        codes = {users.create_user(f"user-{i}").login_code for i in range(30)}
        assert len(codes) == 30

    def test_store_failure_is_creation_failed(self, app, retry):
        store = IdentityStore(db, retry)
        with patch.object(store, "_code_taken", side_effect=StoreError(ErrorKind.FATAL)):
            with pytest.raises(CreationFailed):
                store.create_user("Alice")

    def test_exhausted_insert_is_creation_failed(self, app, retry):
        store = IdentityStore(db, retry)
        with patch.object(store, "_insert", side_effect=transient_error()):
            with pytest.raises(CreationFailed):
                store.create_user("Alice")

    def test_find_by_login_code_normalizes(self, users, alice):
        code = alice.login_code
        assert users.find_by_login_code(code).id == alice.id
        assert users.find_by_login_code(f"  {code.lower()}\n").id == alice.id

    def test_find_by_login_code_non_string(self, users, alice):
        assert users.find_by_login_code(123456) is None
        assert users.find_by_login_code([alice.login_code]) is None

    def test_non_string_name_rejected(self, users):
        with pytest.raises(CreationFailed):
            users.create_user(5)

    def test_find_by_login_code_unknown(self, users, alice):
        assert users.find_by_login_code("ZZZZZZ" if alice.login_code != "ZZZZZZ" else "YYYYYY") is None
        assert users.find_by_login_code("") is None
        assert users.find_by_login_code(None) is None

    def test_find_by_id(self, users, alice):
        assert users.find_by_id(alice.id).name == "Alice"
        assert users.find_by_id(9999) is None

    def test_count(self, users, alice, bob):
        assert users.count() == 2


class TestEntryStore:
    def test_insert_assigns_id_and_timestamp(self, entries, alice):
        entry = entries.insert(alice.id, "Dear diary", "Dear diary", "reflective", 0.1)
        assert entry.id is not None
        assert entry.created_at is not None
        assert entry.user_id == alice.id
        assert entry.mood == "reflective"

    def test_insert_rejects_unknown_mood(self, entries, alice):
        with pytest.raises(ValueError):
            entries.insert(alice.id, "text", "text", "ecstatic")

    def test_insert_returns_none_when_retries_exhausted(self, entries, alice, sleeps):
        with patch.object(entries, "_insert", side_effect=transient_error()):
            assert entries.insert(alice.id, "t", "t", "calm") is None
        assert sleeps == [0.5, 1.0]

    def test_content_stored_verbatim(self, entries, alice):
        content = "  line one\n\n  line two  "
        entry = entries.insert(alice.id, content, "s", "calm")
        assert entries.verify(entry.id, alice.id).content == content

    def test_list_newest_first_and_scoped(self, entries, alice, bob):
        first = entries.insert(alice.id, "one", "one", "calm")
        second = entries.insert(alice.id, "two", "two", "happy")
        entries.insert(bob.id, "bob's", "bob's", "sad")

        listed = entries.list_by_user(alice.id)
        assert [e.id for e in listed] == [second.id, first.id]
        assert all(e.user_id == alice.id for e in listed)

    def test_list_capped(self, entries, alice):
        for i in range(55):
            entries.insert(alice.id, f"entry {i}", f"entry {i}", "reflective")
        assert len(entries.list_by_user(alice.id)) == 50
        assert len(entries.list_by_user(alice.id, limit=5)) == 5

    def test_verify_scoped_to_owner(self, entries, alice, bob):
        entry = entries.insert(alice.id, "mine", "mine", "calm")
        assert entries.verify(entry.id, alice.id).id == entry.id
        assert entries.verify(entry.id, bob.id) is None
        assert entries.verify(entry.id + 100, alice.id) is None

    def test_count(self, entries, alice, bob):
        entries.insert(alice.id, "a", "a", "calm")
        entries.insert(bob.id, "b", "b", "calm")
        entries.insert(bob.id, "c", "c", "calm")
        assert entries.count() == 3
        assert entries.count(bob.id) == 2


class TestEnsureSchema:
    def test_adds_columns_to_legacy_table(self):
        app = create_app({**TEST_CONFIG, "AUTO_MIGRATE": False})
        with app.app_context():
            with db.engine.begin() as conn:
                conn.execute(text(
                    "CREATE TABLE journal_entries ("
                    " id INTEGER PRIMARY KEY,"
                    " content TEXT NOT NULL,"
                    " summary TEXT NOT NULL,"
                    " mood VARCHAR(50) NOT NULL,"
                    " created_at DATETIME NOT NULL)"
                ))

            ensure_schema(db, RetryPolicy(base_delay=0))

            inspector = inspect(db.engine)
            assert "users" in inspector.get_table_names()
            columns = {c["name"] for c in inspector.get_columns("journal_entries")}
            assert {"user_id", "mood_score"} <= columns
            db.session.remove()

    def test_idempotent(self, app):
        ensure_schema(db, RetryPolicy(base_delay=0))
        ensure_schema(db, RetryPolicy(base_delay=0))
        assert "journal_entries" in inspect(db.engine).get_table_names()
