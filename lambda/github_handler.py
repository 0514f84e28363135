from __future__ import annotations

import os
import time
from typing import Any

import boto3
from api_common import emit_wide_event
from api_common import exception_response
from api_common import fail
from api_common import new_wide_event
from api_common import no_content
from api_common import ok
from api_common import parse_body
from api_common import record_error
from api_common import request_id_of
from api_common import route_segments
from board_model import NotFoundError
from board_repository import BoardRepository
from document_store import DynamoDocumentStore
from document_store import TableNames
from github_client import GitHubClient
from identity import CognitoDirectory
from identity import Principal
from identity import SessionTokens
from identity import parse_duration
from identity import principal_from_event


SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")
APP_ENV = os.environ.get("APP_ENV", "production").strip().lower()
JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_EXPIRES_IN = os.environ.get("JWT_EXPIRES_IN", "7d")
USER_POOL_ID = os.environ.get("USER_POOL_ID", "")
TABLES = TableNames.from_env()

_ddb_resource: Any | None = None
_cognito_client: Any | None = None


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


def _store() -> Any:
    return DynamoDocumentStore(_ddb(), TABLES)


def _tokens() -> SessionTokens | None:
    if not JWT_SECRET:
        return None
    return SessionTokens(JWT_SECRET, parse_duration(JWT_EXPIRES_IN))


def _directory() -> CognitoDirectory | None:
    if not USER_POOL_ID:
        return None
    return CognitoDirectory(_cognito(), USER_POOL_ID)


def _github(access_token: str) -> GitHubClient:
    return GitHubClient(access_token)


def _attachment_to_json(doc: dict[str, Any]) -> dict[str, Any]:
    return {"attachmentId": str(doc.get("id") or ""), **doc}


def _github_for(repo: BoardRepository, principal: Principal, not_connected: str, request_id: str) -> tuple[GitHubClient | None, dict[str, Any] | None]:
    user = repo.get_user(principal.sub) or {}
    token = str(user.get("githubAccessToken") or "")
    if not token:
        return None, fail(404, "GITHUB_NOT_CONNECTED", not_connected, request_id)
    return _github(token), None


def _repositories(repo: BoardRepository, principal: Principal, request_id: str) -> dict[str, Any]:
    gh, err = _github_for(repo, principal, "GitHub not connected. Please sign in with GitHub first.", request_id)
    if err:
        return err
    assert gh is not None
    return ok(200, gh.repositories(), request_id)


def _repository_info(repo: BoardRepository, principal: Principal, request_id: str, owner: str, name: str) -> dict[str, Any]:
    gh, err = _github_for(repo, principal, "GitHub not connected", request_id)
    if err:
        return err
    assert gh is not None
    return ok(200, gh.repository_info(owner, name), request_id)


def _attach(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    task: dict[str, Any],
) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        return fail(400, "INVALID_BODY", err, request_id)
    assert body is not None
    if not str(body.get("type") or "").strip():
        return fail(400, "INVALID_BODY", "Type is required (pull_request, commit, or issue)", request_id)

    doc = repo.create_attachment(
        str(task["id"]),
        attachment_type=str(body.get("type")),
        number=body.get("number"),
        sha=body.get("sha"),
        title=body.get("title"),
        url=body.get("url"),
        created_by=principal.sub,
    )
    return ok(
        201,
        {
            "attachmentId": doc["id"],
            "taskId": doc["taskId"],
            "type": doc["type"],
            "number": doc.get("number"),
            "sha": doc.get("sha"),
        },
        request_id,
    )


def _route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    wide_event: dict[str, Any],
) -> dict[str, Any] | None:
    method = str(event.get("httpMethod") or "").upper()
    segments = route_segments(event)
    if segments[:2] != ["api", "github"]:
        return None
    rest = segments[2:]

    # /api/github/repositories
    if method == "GET" and rest == ["repositories"]:
        return _repositories(repo, principal, request_id)

    # /api/github/repositories/{owner}/{repo}
    if method == "GET" and len(rest) == 3 and rest[0] == "repositories":
        wide_event["repository"] = f"{rest[1]}/{rest[2]}"
        return _repository_info(repo, principal, request_id, rest[1], rest[2])

    # /api/github/boards/{boardId}/cards/{cardId}/tasks/{taskId}/...
    if len(rest) < 7 or rest[0] != "boards" or rest[2] != "cards" or rest[4] != "tasks":
        return None
    board_id, card_id, task_id = rest[1], rest[3], rest[5]
    wide_event["board_id"] = board_id
    wide_event["task_id"] = task_id
    tail = rest[6:]

    board = repo.member_board(board_id, principal.sub)
    card = repo.card_in_board(board, card_id)
    task = repo.task_in_card(card, task_id)

    if method == "POST" and tail == ["github-attach"]:
        return _attach(repo, principal, event, request_id, task)
    if method == "GET" and tail == ["github-attachments"]:
        return ok(200, [_attachment_to_json(a) for a in repo.list_task_attachments(task_id)], request_id)
    if method == "DELETE" and len(tail) == 2 and tail[0] == "github-attachments":
        attachment = repo.get_attachment(tail[1])
        if attachment is None or attachment.get("taskId") != task_id:
            raise NotFoundError("attachment", tail[1])
        repo.delete_attachment(tail[1])
        wide_event["attachment_id"] = tail[1]
        return no_content()
    return None


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = request_id_of(event)
    wide_event = new_wide_event("mini_trello_github", event, request_id, SCHEMA_VERSION)

    resp: dict[str, Any] | None = None
    try:
        missing = TABLES.missing()
        if missing:
            resp = fail(500, "MISCONFIGURED", f"missing table env vars: {', '.join(missing)}", request_id)
            wide_event["outcome"] = "error"
            return resp

        principal = principal_from_event(event, _tokens(), _directory())
        if principal is None:
            resp = fail(401, "UNAUTHORIZED", "missing or invalid bearer token", request_id)
            return resp
        wide_event["principal"] = {"sub": principal.sub, "source": principal.source}

        resp = _route(BoardRepository(_store()), principal, event, request_id, wide_event)
        if resp is None:
            method = wide_event["method"]
            resp = fail(404, "NOT_FOUND", f"Endpoint not found: {method} {event.get('path') or ''}", request_id)
        return resp
    except Exception as exc:
        record_error(wide_event, exc)
        resp = exception_response(exc, request_id, expose_internal=APP_ENV != "production")
        return resp
    finally:
        emit_wide_event(wide_event, start, resp)
