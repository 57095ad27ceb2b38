"""
Bearer token authentication.

Tokens are signed with the app's SECRET_KEY via itsdangerous and carry the
user id, username and role. Every request re-loads the user so disabled or
deleted accounts lose access immediately.
"""

from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import AuthenticationError, PermissionDenied
from models import ACTIVE, User, db
from stock import Operator

TOKEN_SALT = 'inventory-auth-token'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(user):
    """Sign a bearer token for ``user``."""
    return _serializer().dumps({
        'user_id': user.id,
        'username': user.username,
        'role': user.role,
    })


def load_token(token):
    """
    Verify ``token`` and return the live, enabled user it belongs to.
    Raises AuthenticationError for anything else.
    """
    try:
        claims = _serializer().loads(token, max_age=current_app.config['TOKEN_MAX_AGE'])
    except SignatureExpired:
        raise AuthenticationError('Token has expired')
    except BadSignature:
        raise AuthenticationError('Token is invalid')

    user = db.session.get(User, claims.get('user_id'))
    if user is None or user.deleted_at is not None:
        raise AuthenticationError('Token is invalid')
    if user.status != ACTIVE:
        raise AuthenticationError('Account is disabled')
    return user


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if not header:
        raise AuthenticationError('Missing authorization token')
    scheme, _, token = header.partition(' ')
    if scheme != 'Bearer' or not token.strip():
        raise AuthenticationError('Authorization header must be "Bearer <token>"')
    return token.strip()


def login_required(fn):
    """
    Decorator to protect API routes that require authentication.
    Stores the authenticated user on ``g.current_user``.
    """
    @wraps(fn)
    def wrapped(*args, **kwargs):
        g.current_user = load_token(_bearer_token())
        return fn(*args, **kwargs)

    return wrapped


def admin_required(fn):
    """Like login_required, and the user must hold the admin role."""
    @wraps(fn)
    @login_required
    def wrapped(*args, **kwargs):
        if not g.current_user.is_admin:
            raise PermissionDenied('Administrator role required')
        return fn(*args, **kwargs)

    return wrapped


def current_operator():
    """Identity recorded on ledger entries for the current request."""
    user = g.current_user
    return Operator(id=user.id, name=user.display_name)
