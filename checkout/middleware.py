"""Middleware for authentication context."""
from functools import wraps
from flask import session, g, current_app
from checkout.database import get_session
from checkout.exceptions import UnauthorizedError
from checkout.models import AppUser


def load_user():
    """
    Load current user into g (Flask's per-request global).

    Called before each request. Sets g.user and g.user_id when a session
    user exists and is active.
    """
    g.user = None
    g.user_id = None

    user_id = session.get('user_id')
    if not user_id:
        return

    try:
        db_session = get_session()
        user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
        if user:
            g.user = user
            g.user_id = user.id
        else:
            session.pop('user_id', None)
    except Exception as e:
        # Anonymous is a valid state; a failed lookup must not crash the request
        current_app.logger.error(f"Error in load_user: {e}")


def require_login(f):
    """
    Decorator: Require user to be logged in.

    Raises UnauthorizedError (JSON 401) when nobody is signed in.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def sign_in(user: AppUser) -> None:
    """Bind the session cookie to ``user``."""
    session.clear()
    session['user_id'] = user.id
    session.permanent = True
    g.user = user
    g.user_id = user.id
