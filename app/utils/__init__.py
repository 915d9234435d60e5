from .responses import ok, error, validation_error_response, internal_error_response
from .auth import auth_required, auth_optional, role_required, scope_required
from .validation import validate_schema
from .db import transactional
from .money import to_money, to_minor_units
from .jwt import (
    create_access_token,
    decode_token,
    TokenError,
)

__all__ = [
    'ok',
    'error',
    'validation_error_response',
    'internal_error_response',
    'auth_required',
    'auth_optional',
    'role_required',
    'scope_required',
    'create_access_token',
    'decode_token',
    'TokenError',
    'validate_schema',
    'transactional',
    'to_money',
    'to_minor_units',
]
