import logging
from functools import wraps

from flask import jsonify
from flask_login import LoginManager, UserMixin, current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

TOKEN_SALT = "auth-token"

login_manager = LoginManager()


class AuthenticatedUser(UserMixin):
    def __init__(self, user):
        self.id = user.id
        self.username = user.username
        self.is_admin = user.is_admin


# ==============================
# Credentials
# ==============================

def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    return check_password_hash(password_hash, password)


def register(store, credentials, is_admin=False):
    return store.create_user(credentials.username, hash_password(credentials.password), is_admin)


def authenticate(store, credentials):
    user = store.get_user_by_username(credentials.username)
    if not user or not verify_password(user.password_hash, credentials.password):
        raise Unauthorized("Invalid credentials.")
    return user


# ==============================
# Bearer tokens
# ==============================

def _serializer(secret_key):
    return URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)


def issue_token(user, secret_key=None):
    return _serializer(secret_key or Config.SECRET_KEY).dumps(user.to_dict())


def verify_token(token, secret_key=None, max_age=None):
    """Return the identity payload carried by ``token`` or None if it is bad or expired."""
    try:
        return _serializer(secret_key or Config.SECRET_KEY).loads(
            token, max_age=max_age or Config.TOKEN_MAX_AGE
        )
    except SignatureExpired:
        logger.info("Rejected expired token")
    except BadSignature:
        logger.info("Rejected token with bad signature")
    return None


def bearer_token(request):
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def init_auth(app, store):
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user_from_request(request):
        token = bearer_token(request)
        if not token:
            return None

        payload = verify_token(
            token, app.config["SECRET_KEY"], app.config.get("TOKEN_MAX_AGE")
        )
        if not payload or "id" not in payload:
            return None

        # Identity and role come from the store, not the token
        user = store.get_user(payload["id"])
        return AuthenticatedUser(user) if user else None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Authentication required."}), 401


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            raise Forbidden("Forbidden: Admin access required.")
        return view(*args, **kwargs)

    return wrapper
