from typing import Dict

from flask_jwt_extended import get_jwt_identity

from .errors import Forbidden, InvalidInput, Unauthorized
from .helpers import parse_object_id

ALLOWED_USER_ROLES = {"user", "admin"}


def normalize_role(value) -> str:
    normalized = str(value or "").strip().lower()
    if normalized not in ALLOWED_USER_ROLES:
        raise InvalidInput(f"Role must be one of: {', '.join(sorted(ALLOWED_USER_ROLES))}.")
    return normalized


def get_current_user(db) -> Dict:
    """Resolve the user behind the verified JWT; call inside ``jwt_required``."""
    try:
        user_id = parse_object_id(get_jwt_identity())
    except InvalidInput:
        raise Unauthorized() from None

    user = db.users.find_one({"_id": user_id})
    if not user:
        raise Unauthorized()
    return user


def require_role(db, *roles: str) -> Dict:
    user = get_current_user(db)
    user_role = user.get("role", "user")
    if user_role not in roles:
        raise Forbidden(f"Role: {user_role} is not allowed to access this resource")
    return user


def require_admin_user(db) -> Dict:
    return require_role(db, "admin")
