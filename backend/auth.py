"""
Cookie sessions.

The session is nothing but the user's numeric id in an HTTP-only cookie.
It is not signed: whoever holds the cookie (or the login code) holds the
account. That is the whole auth model of this app.
"""

import logging

from errors import InvalidCode, JournalError
from store import normalize_login_code

logger = logging.getLogger("emojournal.auth")

SESSION_COOKIE = "user_id"
SESSION_MAX_AGE = 60 * 60 * 24 * 365  # 1 year
MAX_USER_ID = 2 ** 31 - 1  # Postgres INTEGER


def parse_session_token(token):
    """Cookie value -> positive int user id. Raises ValueError otherwise."""
    user_id = int(str(token).strip())
    if not 0 < user_id <= MAX_USER_ID:
        raise ValueError(f"not a user id: {token!r}")
    return user_id


class SessionResolver:
    def __init__(self, users):
        self.users = users

    def current_user(self, token):
        """The user behind ``token``, or None. Never raises."""
        if not token:
            return None
        try:
            return self.users.find_by_id(parse_session_token(token))
        except ValueError:
            logger.warning("Malformed session token, treating as anonymous")
            return None
        except JournalError:
            # Fail open to anonymous: a db hiccup renders the logged-out view.
            logger.exception("Could not resolve session token, treating as anonymous")
            return None

    def login(self, code):
        user = self.users.find_by_login_code(code)
        if user is None:
            logger.info("Login rejected for code of length %d", len(normalize_login_code(code)))
            raise InvalidCode("unknown login code")
        logger.info("User id=%s logged in", user.id)
        return user

    def logout(self, token):
        # Nothing is stored server side; dropping the cookie is the logout.
        logger.info("Session ended")


def set_session_cookie(response, user, secure=False):
    response.set_cookie(
        SESSION_COOKIE,
        str(user.id),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=secure,
        samesite="Lax",
    )
    return response


def clear_session_cookie(response, secure=False):
    response.delete_cookie(SESSION_COOKIE, httponly=True, secure=secure, samesite="Lax")
    return response
