from __future__ import annotations

import os
import re
import time
from typing import Any

import boto3
from api_common import emit_wide_event
from api_common import exception_response
from api_common import fail
from api_common import new_wide_event
from api_common import now_iso
from api_common import ok
from api_common import parse_body
from api_common import query_param
from api_common import record_error
from api_common import redirect
from api_common import request_id_of
from api_common import route_segments
from board_repository import BoardRepository
from document_store import DynamoDocumentStore
from document_store import TableNames
from github_client import GitHubClient
from github_client import GitHubOAuth
from identity import CognitoDirectory
from identity import SessionTokens
from identity import parse_duration
from identity import principal_from_event
from mailer import SesMailer
from verification_codes import CODE_TTL_SECONDS
from verification_codes import VerificationCodes


SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")
APP_ENV = os.environ.get("APP_ENV", "production").strip().lower()
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/")
JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_EXPIRES_IN = os.environ.get("JWT_EXPIRES_IN", "7d")
USER_POOL_ID = os.environ.get("USER_POOL_ID", "")
GITHUB_CLIENT_ID = os.environ.get("GITHUB_CLIENT_ID", "")
GITHUB_CLIENT_SECRET = os.environ.get("GITHUB_CLIENT_SECRET", "")
GITHUB_CALLBACK_URL = os.environ.get("GITHUB_CALLBACK_URL", "")
EMAIL_FROM = os.environ.get("EMAIL_FROM", "")
TABLES = TableNames.from_env()

EMAIL_IN_USE_MESSAGE = "This email is already registered. Please sign in instead."

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_ddb_resource: Any | None = None
_cognito_client: Any | None = None
_ses_client: Any | None = None


def _ddb() -> Any:
    global _ddb_resource
    if _ddb_resource is None:
        _ddb_resource = boto3.resource("dynamodb")
    return _ddb_resource


def _cognito() -> Any:
    global _cognito_client
    if _cognito_client is None:
        _cognito_client = boto3.client("cognito-idp")
    return _cognito_client


def _ses() -> Any:
    global _ses_client
    if _ses_client is None:
        _ses_client = boto3.client("ses")
    return _ses_client


def _store() -> Any:
    return DynamoDocumentStore(_ddb(), TABLES)


def _tokens() -> SessionTokens:
    return SessionTokens(JWT_SECRET, parse_duration(JWT_EXPIRES_IN))


def _directory() -> CognitoDirectory:
    return CognitoDirectory(_cognito(), USER_POOL_ID)


def _mailer() -> SesMailer:
    return SesMailer(_ses(), EMAIL_FROM)


def _oauth() -> GitHubOAuth:
    return GitHubOAuth(GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET, GITHUB_CALLBACK_URL)


def _github(access_token: str) -> GitHubClient:
    return GitHubClient(access_token)


def _user_to_json(doc: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in doc.items() if k != "githubAccessToken"}
    out["githubConnected"] = bool(doc.get("githubAccessToken"))
    return out


def _email_and_code(body: dict[str, Any]) -> tuple[str, str]:
    return str(body.get("email") or "").strip().lower(), str(body.get("code") or "").strip()


def _health(request_id: str) -> dict[str, Any]:
    return ok(
        200,
        {"status": "ok", "environment": APP_ENV, "timestamp": now_iso()},
        request_id,
        message="Mini Trello API is running",
    )


def _github_auth_url(request_id: str) -> dict[str, Any]:
    if not GITHUB_CLIENT_ID or not GITHUB_CALLBACK_URL:
        return fail(500, "MISCONFIGURED", "GitHub OAuth is not configured", request_id)
    return ok(200, {"authUrl": _oauth().authorize_url()}, request_id)


def _github_callback(event: dict[str, Any], wide_event: dict[str, Any]) -> dict[str, Any]:
    signin_url = f"{FRONTEND_URL}/auth/signin"
    code = query_param(event, "code")
    if not code:
        wide_event["outcome"] = "no_code"
        return redirect(signin_url, {"error": "no_code"})

    try:
        access_token = _oauth().exchange_code(code)
        if not access_token:
            wide_event["outcome"] = "no_token"
            return redirect(signin_url, {"error": "no_token"})

        gh = _github(access_token)
        gh_user = gh.user()
        login = str(gh_user.get("login") or "")
        email = str(gh_user.get("email") or "").strip().lower()
        if not email:
            email = (gh.primary_email() or f"{login}@github.com").strip().lower()
        display_name = str(gh_user.get("name") or login or email.split("@", 1)[0])

        identity, created = _directory().find_or_create(email, display_name)
        repo = BoardRepository(_store())
        repo.get_or_create_user(identity["sub"], email, display_name)
        repo.link_github(
            identity["sub"],
            github_id=int(gh_user.get("id") or 0),
            github_login=login,
            access_token=access_token,
            photo_url=str(gh_user.get("avatar_url") or ""),
        )
        session = _tokens().issue(identity["sub"], email)
    except Exception as exc:
        record_error(wide_event, exc)
        wide_event["outcome"] = "github_auth_failed"
        return redirect(signin_url, {"error": str(exc) or "github_auth_failed"})

    wide_event["outcome"] = "success"
    wide_event["principal"] = {"sub": identity["sub"], "source": "github"}
    wide_event["created_user"] = created
    return redirect(f"{FRONTEND_URL}/auth/callback", {"token": session, "provider": "github"})


def _github_token(event: dict[str, Any], request_id: str) -> dict[str, Any]:
    principal = principal_from_event(event, _tokens(), _directory())
    if principal is None:
        return fail(401, "UNAUTHORIZED", "missing or invalid bearer token", request_id)
    user = BoardRepository(_store()).get_user(principal.sub) or {}
    token = str(user.get("githubAccessToken") or "")
    if not token:
        return fail(404, "GITHUB_NOT_CONNECTED", "GitHub not connected", request_id)
    return ok(200, {"accessToken": token, "githubLogin": str(user.get("githubLogin") or "")}, request_id)


def _send_code(event: dict[str, Any], request_id: str, wide_event: dict[str, Any]) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        return fail(400, "INVALID_BODY", err, request_id)
    assert body is not None
    email, _ = _email_and_code(body)
    if not email:
        return fail(400, "INVALID_BODY", "Email is required", request_id)
    if not _EMAIL_RE.match(email):
        return fail(400, "INVALID_EMAIL", f"invalid email: {email}", request_id)

    issued = VerificationCodes(_store()).issue(email)
    mailer = _mailer()
    if mailer.configured:
        wide_event["ses_message_id"] = mailer.send_verification_code(email, issued["code"], minutes=CODE_TTL_SECONDS // 60)
        return ok(200, None, request_id, message="Verification code sent to email")

    wide_event["email_delivery"] = "skipped"
    data = {"code": issued["code"]} if APP_ENV == "development" else None
    return ok(200, data, request_id, message="Verification code generated")


def _verify_code(event: dict[str, Any], request_id: str) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        return fail(400, "INVALID_BODY", err, request_id)
    assert body is not None
    email, code = _email_and_code(body)
    if not email or not code:
        return fail(400, "INVALID_BODY", "Email and code are required", request_id)
    VerificationCodes(_store()).verify(email, code)
    return ok(200, None, request_id, message="Code verified successfully")


def _signup(event: dict[str, Any], request_id: str, wide_event: dict[str, Any]) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        return fail(400, "INVALID_BODY", err, request_id)
    assert body is not None
    email, code = _email_and_code(body)
    if not email or not code:
        return fail(400, "INVALID_BODY", "Email and code are required", request_id)
    display_name = str(body.get("displayName") or "").strip() or None

    store = _store()
    repo = BoardRepository(store)
    directory = _directory()
    if repo.find_user_by_email(email) is not None or directory.find_by_email(email) is not None:
        return fail(409, "EMAIL_IN_USE", EMAIL_IN_USE_MESSAGE, request_id)

    VerificationCodes(store).verify(email, code)
    identity = directory.create(email, display_name)
    user = repo.create_user(identity["sub"], email, display_name)
    wide_event["principal"] = {"sub": identity["sub"], "source": "signup"}
    token = _tokens().issue(identity["sub"], email)
    return ok(201, {"token": token, "user": _user_to_json(user)}, request_id, message="Account created")


def _signin(event: dict[str, Any], request_id: str, wide_event: dict[str, Any]) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        return fail(400, "INVALID_BODY", err, request_id)
    assert body is not None
    email, code = _email_and_code(body)
    if not email or not code:
        return fail(400, "INVALID_BODY", "Email and code are required", request_id)

    store = _store()
    identity = _directory().find_by_email(email)
    if identity is None:
        return fail(404, "USER_NOT_FOUND", "No account found for this email. Please sign up first.", request_id)

    VerificationCodes(store).verify(email, code)
    user = BoardRepository(store).get_or_create_user(identity["sub"], email)
    wide_event["principal"] = {"sub": identity["sub"], "source": "signin"}
    token = _tokens().issue(identity["sub"], email)
    return ok(200, {"token": token, "user": _user_to_json(user)}, request_id, message="Signed in")


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = request_id_of(event)
    wide_event = new_wide_event("mini_trello_auth", event, request_id, SCHEMA_VERSION)

    method = str(event.get("httpMethod") or "").upper()
    segments = route_segments(event)
    resp: dict[str, Any] | None = None
    try:
        # /health
        if method == "GET" and segments == ["health"]:
            resp = _health(request_id)
            return resp

        missing = TABLES.missing()
        if missing or not JWT_SECRET:
            missing_vars = missing + ([] if JWT_SECRET else ["JWT_SECRET"])
            resp = fail(500, "MISCONFIGURED", f"missing env vars: {', '.join(missing_vars)}", request_id)
            wide_event["outcome"] = "error"
            return resp

        if len(segments) >= 2 and segments[:2] == ["api", "auth"]:
            rest = segments[2:]
            if method == "GET" and rest == ["github"]:
                resp = _github_auth_url(request_id)
            elif method == "GET" and rest == ["github", "callback"]:
                resp = _github_callback(event, wide_event)
            elif method == "GET" and rest == ["github", "token"]:
                resp = _github_token(event, request_id)
            elif method == "POST" and rest == ["send-code"]:
                resp = _send_code(event, request_id, wide_event)
            elif method == "POST" and rest == ["verify-code"]:
                resp = _verify_code(event, request_id)
            elif method == "POST" and rest == ["signup"]:
                resp = _signup(event, request_id, wide_event)
            elif method == "POST" and rest == ["signin"]:
                resp = _signin(event, request_id, wide_event)

        if resp is None:
            resp = fail(404, "NOT_FOUND", f"Endpoint not found: {method} {event.get('path') or ''}", request_id)
        return resp
    except Exception as exc:
        record_error(wide_event, exc)
        resp = exception_response(exc, request_id, expose_internal=APP_ENV != "production")
        return resp
    finally:
        emit_wide_event(wide_event, start, resp)
