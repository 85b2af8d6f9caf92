from typing import Iterable, Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import Settings
from errors import Forbidden, InvalidToken, Unauthenticated
from models import User, UserRole


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def issue_token(settings: Settings, user_id: int) -> str:
    return _serializer(settings).dumps({"u": user_id})


def read_token(settings: Settings, token: str, max_age: Optional[int] = None) -> int:
    """Return the user id carried by ``token``.

    ``max_age`` is in seconds and defaults to the configured token lifetime.
    """
    if max_age is None:
        max_age = settings.token_max_age_secs
    try:
        data = _serializer(settings).loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise InvalidToken("Token has expired") from exc
    except BadSignature as exc:
        raise InvalidToken() from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise InvalidToken()
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def authenticate(
    session: Session, settings: Settings, authorization: Optional[str]
) -> User:
    token = bearer_token(authorization)
    if not token:
        raise Unauthenticated("No token provided")
    user_id = read_token(settings, token)
    user = session.get(User, user_id)
    if user is None:
        raise InvalidToken("User not found")
    return user


def authorize(user: User, roles: Iterable[UserRole]) -> User:
    allowed = {UserRole(role) for role in roles}
    if user.role not in allowed:
        raise Forbidden()
    return user
