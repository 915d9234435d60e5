from functools import wraps
from flask import request, g
from .responses import error
from app.auth.permissions import role_has_scope
from .jwt import decode_token, TokenError
from models import db
from models.user import User


def _bearer_token():
    auth = request.headers.get("Authorization", "")
    if not auth:
        return None
    return auth.split(" ", 1)[1] if auth.startswith("Bearer ") else auth


def _load_user(token):
    payload = decode_token(token, expected_type="access")
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise TokenError("invalid token subject")
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise TokenError("unknown user")
    g.role = user.role
    return user


def auth_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return error("Auth header missing", status=401)
        try:
            request.user = _load_user(token)
        except TokenError as e:
            return error(str(e), status=401)
        return func(*args, **kwargs)

    return wrapper


def auth_optional(func):
    """Like auth_required, but lets guests through with request.user = None."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        request.user = None
        if token:
            try:
                request.user = _load_user(token)
            except TokenError as e:
                return error(str(e), status=401)
        return func(*args, **kwargs)

    return wrapper


def _to_set(obj):
    return set(obj) if isinstance(obj, (list, tuple, set)) else {obj}


def role_required(required):
    """Authorize based on user role or scoped action."""
    required_set = _to_set(required)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = getattr(getattr(request, "user", None), "role", None)
            if not role:
                return error("Role missing", status=403)
            for entry in required_set:
                if ":" in entry:
                    r, action = entry.split(":", 1)
                    if role == r and role_has_scope(role, action):
                        break
                else:
                    if role == entry:
                        break
            else:
                return error("Forbidden", status=403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def scope_required(action):
    """Authorize any role whose scopes include ``action``."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = getattr(getattr(request, "user", None), "role", None)
            if not role or not role_has_scope(role, action):
                return error("Forbidden", status=403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
