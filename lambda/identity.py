from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable

from botocore.exceptions import ClientError
from jose import jwt
from jose.exceptions import ExpiredSignatureError
from jose.exceptions import JWTError


SESSION_ALGORITHM = "HS256"
SESSION_ISSUER = "mini-trello"
DEFAULT_SESSION_SECONDS = 7 * 24 * 3600

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class IdentityError(Exception):
    pass


class InvalidTokenError(IdentityError):
    pass


def parse_duration(value: str | None, default: int = DEFAULT_SESSION_SECONDS) -> int:
    """Parse ``7d`` / ``12h`` / ``30m`` / ``3600`` style durations into seconds."""
    raw = str(value or "").strip().lower()
    if not raw:
        return default
    m = _DURATION_RE.match(raw)
    if not m:
        raise ValueError(f"invalid duration: {value}")
    seconds = int(m.group(1)) * _DURATION_UNITS[m.group(2)]
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value}")
    return seconds


@dataclass(frozen=True)
class Principal:
    sub: str
    email: str = ""
    source: str = ""


class SessionTokens:
    """HS256 bearer tokens handed to the browser after sign-in."""

    def __init__(
        self,
        secret: str,
        expires_in: int = DEFAULT_SESSION_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise IdentityError("JWT_SECRET is required to issue session tokens")
        self._secret = secret
        self._expires_in = int(expires_in)
        self._clock = clock

    def issue(self, user_id: str, email: str = "") -> str:
        now = int(self._clock())
        claims = {
            "sub": user_id,
            "email": email,
            "iss": SESSION_ISSUER,
            "iat": now,
            "exp": now + self._expires_in,
        }
        return jwt.encode(claims, self._secret, algorithm=SESSION_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
            )
        except ExpiredSignatureError as e:
            raise InvalidTokenError("session token expired") from e
        except JWTError as e:
            raise InvalidTokenError(f"invalid session token: {e}") from e
        if not str(claims.get("sub") or "").strip():
            raise InvalidTokenError("session token has no subject")
        return claims


def _attr(attrs: list[dict[str, Any]] | None, name: str) -> str:
    for a in attrs or []:
        if isinstance(a, dict) and a.get("Name") == name:
            return str(a.get("Value") or "")
    return ""


class CognitoDirectory:
    """Finds and creates identities in the Cognito user pool."""

    def __init__(self, cognito_client: Any, user_pool_id: str) -> None:
        self._cognito = cognito_client
        self._pool_id = user_pool_id

    def _require_pool(self) -> None:
        if not self._pool_id:
            raise IdentityError("USER_POOL_ID is required")

    def find_by_email(self, email: str) -> dict[str, str] | None:
        self._require_pool()
        email_norm = str(email or "").strip().lower()
        if not email_norm or '"' in email_norm or "\\" in email_norm:
            return None
        resp = self._cognito.list_users(
            UserPoolId=self._pool_id,
            Filter=f'email = "{email_norm}"',
            Limit=1,
        )
        users = resp.get("Users") or []
        if not users:
            return None
        u = users[0]
        return {
            "sub": _attr(u.get("Attributes"), "sub"),
            "username": str(u.get("Username") or ""),
            "email": _attr(u.get("Attributes"), "email") or email_norm,
        }

    def create(self, email: str, display_name: str | None = None) -> dict[str, str]:
        self._require_pool()
        email_norm = str(email or "").strip().lower()
        attrs = [
            {"Name": "email", "Value": email_norm},
            {"Name": "email_verified", "Value": "true"},
        ]
        if display_name:
            attrs.append({"Name": "name", "Value": display_name})
        resp = self._cognito.admin_create_user(
            UserPoolId=self._pool_id,
            Username=email_norm,
            UserAttributes=attrs,
            MessageAction="SUPPRESS",
        )
        user = resp.get("User") or {}
        sub = _attr(user.get("Attributes"), "sub")
        if not sub:
            raise IdentityError(f"identity provider returned no subject for {email_norm}")
        return {"sub": sub, "username": str(user.get("Username") or email_norm), "email": email_norm}

    def find_or_create(self, email: str, display_name: str | None = None) -> tuple[dict[str, str], bool]:
        existing = self.find_by_email(email)
        if existing is not None:
            return existing, False
        return self.create(email, display_name), True

    def user_from_access_token(self, access_token: str) -> dict[str, str] | None:
        try:
            resp = self._cognito.get_user(AccessToken=access_token)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code") or "")
            if code in {"NotAuthorizedException", "UserNotFoundException"}:
                return None
            raise
        attrs = resp.get("UserAttributes") or []
        sub = _attr(attrs, "sub")
        if not sub:
            return None
        return {"sub": sub, "username": str(resp.get("Username") or ""), "email": _attr(attrs, "email")}


def authorizer_claims(event: dict[str, Any]) -> dict[str, Any]:
    rc = event.get("requestContext") or {}
    if not isinstance(rc, dict):
        return {}
    auth = rc.get("authorizer") or {}
    if not isinstance(auth, dict):
        return {}
    claims = auth.get("claims")
    if isinstance(claims, dict):
        return claims
    jwt_claims = (auth.get("jwt") or {}).get("claims")
    if isinstance(jwt_claims, dict):
        return jwt_claims
    return {}


def bearer_token(event: dict[str, Any]) -> str:
    headers = event.get("headers") or {}
    if not isinstance(headers, dict):
        return ""
    value = ""
    for k, v in headers.items():
        if str(k).lower() == "authorization":
            value = str(v or "").strip()
            break
    if value[:7].lower() != "bearer ":
        return ""
    return value[7:].strip()


def principal_from_event(
    event: dict[str, Any],
    tokens: SessionTokens | None,
    directory: CognitoDirectory | None = None,
) -> Principal | None:
    """Resolve the caller: API Gateway authorizer claims, then a session token,
    then a Cognito access token. Returns None when nothing verifies."""
    claims = authorizer_claims(event)
    sub = str(claims.get("sub") or "").strip()
    if sub:
        return Principal(sub=sub, email=str(claims.get("email") or ""), source="authorizer")

    token = bearer_token(event)
    if not token:
        return None
    if tokens is not None:
        try:
            session = tokens.verify(token)
            return Principal(sub=str(session["sub"]), email=str(session.get("email") or ""), source="session")
        except InvalidTokenError:
            if directory is None:
                return None
    if directory is None:
        return None
    user = directory.user_from_access_token(token)
    if not user:
        return None
    return Principal(sub=user["sub"], email=user.get("email", ""), source="cognito")
