from unittest.mock import MagicMock

import pytest

from auth import SessionResolver, parse_session_token
from errors import ErrorKind, InvalidCode, StoreError


class TestParseSessionToken:
    def test_numeric(self):
        assert parse_session_token("42") == 42
        assert parse_session_token(" 7 ") == 7

    @pytest.mark.parametrize("token", ["abc", "", "0", "-3", "1.5", "99999999999999999999"])
    def test_rejects_garbage(self, token):
        with pytest.raises(ValueError):
            parse_session_token(token)


class TestCurrentUser:
    def test_resolves_user(self, sessions, alice):
        assert sessions.current_user(str(alice.id)).id == alice.id

    def test_missing_token_is_anonymous(self, sessions):
        assert sessions.current_user(None) is None
        assert sessions.current_user("") is None

    def test_unknown_id_is_anonymous(self, sessions, alice):
        assert sessions.current_user(str(alice.id + 1000)) is None

    def test_malformed_token_is_anonymous(self, sessions):
        assert sessions.current_user("not-a-number") is None

    def test_token_never_logged(self, sessions, caplog):
        caplog.set_level("DEBUG", logger="emojournal")
        sessions.current_user("secret-token-value")
        sessions.logout("4242")
        assert "secret-token-value" not in caplog.text
        assert "4242" not in caplog.text

    def test_store_failure_is_anonymous(self, caplog):
        users = MagicMock()
        users.find_by_id.side_effect = StoreError(ErrorKind.FATAL, "connection refused")
        resolver = SessionResolver(users)

        assert resolver.current_user("5") is None
        assert "treating as anonymous" in caplog.text


class TestLogin:
    def test_canonical_code(self, sessions, alice):
        assert sessions.login(alice.login_code).id == alice.id

    def test_lowercase_and_whitespace(self, sessions, alice):
        assert sessions.login(f"  {alice.login_code.lower()}  ").id == alice.id

    def test_non_string_code(self, sessions):
        with pytest.raises(InvalidCode):
            sessions.login(123456)

    def test_unknown_code(self, sessions, alice):
        with pytest.raises(InvalidCode):
            sessions.login("######")

    def test_blank_code(self, sessions):
        with pytest.raises(InvalidCode):
            sessions.login("   ")

    def test_logout_never_fails(self, sessions):
        sessions.logout(None)
        sessions.logout("123")
