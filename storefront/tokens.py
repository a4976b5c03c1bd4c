from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict

from flask import jsonify
from flask_jwt_extended import create_access_token, unset_access_cookies

from .config import Settings
from .serializers import serialize_user

TOKEN_COOKIE_NAME = "token"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenIssuer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def issue(self, user: Dict) -> IssuedToken:
        token = create_access_token(
            identity=str(user["_id"]), expires_delta=self.settings.jwt_expires
        )
        expires_at = datetime.now(timezone.utc) + self.settings.cookie_lifetime
        return IssuedToken(token=token, expires_at=expires_at)

    def send_token(self, user: Dict, status_code: int = 200):
        issued = self.issue(user)
        response = jsonify(
            {"success": True, "user": serialize_user(user), "token": issued.token}
        )
        response.status_code = status_code
        response.set_cookie(
            TOKEN_COOKIE_NAME,
            issued.token,
            expires=issued.expires_at,
            httponly=True,
            secure=self.settings.production,
            samesite="Strict",
        )
        return response

    def clear(self, response):
        unset_access_cookies(response)
        return response
