import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.exceptions import GoogleAuthError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from config import Settings


logger = logging.getLogger(__name__)

SESSION_COOKIE = "token"

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidIdentityToken(Exception):
    pass


class InvalidSessionToken(Exception):
    pass


@dataclass(frozen=True)
class GoogleIdentity:
    email: str
    name: str
    subject: str


@dataclass(frozen=True)
class SessionUser:
    user_id: int
    email: str


class GoogleIdentityVerifier:
    """Checks Google ID tokens (signature, expiry, audience) with google-auth."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self._transport = google_requests.Request()

    def verify(self, token: str) -> GoogleIdentity:
        if not self.client_id:
            raise InvalidIdentityToken("Google client id is not configured")
        try:
            payload = id_token.verify_oauth2_token(
                token, self._transport, self.client_id
            )
        except (ValueError, GoogleAuthError) as exc:
            raise InvalidIdentityToken(str(exc)) from exc

        email = payload.get("email")
        if not email:
            raise InvalidIdentityToken("Invalid Google token payload")
        return GoogleIdentity(
            email=email,
            name=payload.get("name") or "",
            subject=payload.get("sub") or "",
        )


class SessionTokens:
    """HS256 JWTs carrying ``userId`` and ``email``."""

    algorithm = "HS256"

    def __init__(self, secret: str, max_age_secs: int) -> None:
        self.max_age_secs = max_age_secs
        self._secret = secret

    def issue(self, user_id: int, email: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "userId": user_id,
            "email": email,
            "iat": now,
            "exp": now + timedelta(seconds=self.max_age_secs),
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def read(self, token: str) -> SessionUser:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "userId"]},
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSessionToken("Invalid or expired session token") from exc

        user_id = claims.get("userId")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise InvalidSessionToken("Malformed session token")
        return SessionUser(user_id=user_id, email=str(claims.get("email") or ""))


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_max_age_secs,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionUser:
    """Reads the session token from the cookie, else from the Bearer header."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token and creds and creds.credentials:
        token = creds.credentials
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - No token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return request.app.state.session_tokens.read(token)
    except InvalidSessionToken as exc:
        logger.info(f"session_rejected: reason={exc}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
