from __future__ import annotations

import os
import time
from typing import Any

import boto3
from api_common import emit_wide_event
from api_common import exception_response
from api_common import fail
from api_common import new_wide_event
from api_common import ok
from api_common import parse_body
from api_common import record_error
from api_common import request_id_of
from api_common import route_segments
from board_model import BoardUpdate
from board_model import CardUpdate
from board_model import ForbiddenError
from board_model import NotFoundError
from board_model import TaskUpdate
from board_model import UserUpdate
from board_model import ValidationError
from board_repository import BoardRepository
from document_store import DynamoDocumentStore
from document_store import TableNames
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


def _user_to_json(doc: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in doc.items() if k != "githubAccessToken"}
    out["githubConnected"] = bool(doc.get("githubAccessToken"))
    return out


def _body_or_error(event: dict[str, Any]) -> dict[str, Any]:
    body, err = parse_body(event)
    if err:
        raise ValidationError(err)
    assert body is not None
    return body


# Boards


def _list_boards(repo: BoardRepository, principal: Principal, request_id: str) -> dict[str, Any]:
    return ok(200, repo.list_user_boards(principal.sub), request_id)


def _create_board(repo: BoardRepository, principal: Principal, event: dict[str, Any], request_id: str) -> dict[str, Any]:
    body = _body_or_error(event)
    board_id = repo.create_board(body.get("name"), body.get("description"), principal.sub)
    return ok(201, repo.get_board(board_id), request_id, message="Board created")


def _board_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    board_id: str,
    wide_event: dict[str, Any],
) -> dict[str, Any] | None:
    board = repo.member_board(board_id, principal.sub)
    if method == "GET":
        return ok(200, board, request_id)
    if board.get("ownerId") != principal.sub:
        raise ForbiddenError("only the board owner can change or delete the board")
    if method == "PATCH":
        update = BoardUpdate.from_payload(_body_or_error(event))
        return ok(200, repo.update_board(board_id, update), request_id)
    if method == "DELETE":
        report = repo.delete_board(board_id)
        wide_event["cascade"] = report.as_dict()
        return ok(200, {"boardId": board_id, "deleted": report.as_dict()}, request_id, message="Board deleted")
    return None


# Cards


def _cards_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    board_id: str,
) -> dict[str, Any] | None:
    repo.member_board(board_id, principal.sub)
    if method == "GET":
        return ok(200, repo.list_board_cards(board_id), request_id)
    if method == "POST":
        body = _body_or_error(event)
        card_id = repo.create_card(board_id, body.get("name"), body.get("description"), principal.sub)
        return ok(201, repo.get_card(card_id), request_id, message="Card created")
    return None


def _card_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    board_id: str,
    card_id: str,
    wide_event: dict[str, Any],
) -> dict[str, Any] | None:
    board = repo.member_board(board_id, principal.sub)
    card = repo.card_in_board(board, card_id)
    if method == "GET":
        return ok(200, card, request_id)
    if method == "PATCH":
        update = CardUpdate.from_payload(_body_or_error(event))
        return ok(200, repo.update_card(card_id, update), request_id)
    if method == "DELETE":
        report = repo.delete_card(card_id)
        wide_event["cascade"] = report.as_dict()
        return ok(200, {"cardId": card_id, "deleted": report.as_dict()}, request_id, message="Card deleted")
    return None


# Tasks


def _tasks_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    board_id: str,
    card_id: str,
) -> dict[str, Any] | None:
    board = repo.member_board(board_id, principal.sub)
    card = repo.card_in_board(board, card_id)
    if method == "GET":
        return ok(200, repo.list_card_tasks(card_id), request_id)
    if method == "POST":
        body = _body_or_error(event)
        task_id = repo.create_task(
            board_id,
            str(card["id"]),
            body.get("title"),
            body.get("description"),
            principal.sub,
            body.get("status") or "icebox",
            priority=body.get("priority"),
            deadline=body.get("deadline"),
            assigned_to=body.get("assignedTo") or [],
        )
        return ok(201, repo.get_task(task_id), request_id, message="Task created")
    return None


def _task_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    board_id: str,
    card_id: str,
    task_id: str,
    wide_event: dict[str, Any],
) -> dict[str, Any] | None:
    board = repo.member_board(board_id, principal.sub)
    card = repo.card_in_board(board, card_id)
    task = repo.task_in_card(card, task_id)
    if method == "GET":
        return ok(200, task, request_id)
    if method == "PATCH":
        update = TaskUpdate.from_payload(_body_or_error(event))
        return ok(200, repo.update_task(task_id, update), request_id)
    if method == "DELETE":
        report = repo.delete_task(task_id)
        wide_event["cascade"] = report.as_dict()
        return ok(200, {"taskId": task_id, "deleted": report.as_dict()}, request_id, message="Task deleted")
    return None


# Invitations


def _invite(repo: BoardRepository, principal: Principal, event: dict[str, Any], request_id: str, board_id: str) -> dict[str, Any]:
    body = _body_or_error(event)
    member_id = str(body.get("memberId") or "").strip()
    member_email = str(body.get("memberEmail") or "").strip().lower()
    if member_id:
        member = repo.get_user(member_id)
    elif member_email:
        member = repo.find_user_by_email(member_email)
    else:
        raise ValidationError("memberId or memberEmail is required")
    if member is None:
        raise NotFoundError("user", member_id or member_email)

    invitation_id = repo.create_invitation(board_id, principal.sub, str(member["id"]), str(member.get("email") or ""))
    return ok(201, repo.get_invitation(invitation_id), request_id, message="Invitation sent")


def _answer_invitation(
    repo: BoardRepository,
    principal: Principal,
    request_id: str,
    invitation_id: str,
    action: str,
) -> dict[str, Any]:
    inv = repo.get_invitation(invitation_id)
    if inv is None:
        raise NotFoundError("invitation", invitation_id)
    if inv.get("memberId") != principal.sub:
        raise ForbiddenError("invitation belongs to another user")
    if action == "accept":
        return ok(200, repo.accept_invitation(invitation_id), request_id, message="Invitation accepted")
    return ok(200, repo.decline_invitation(invitation_id), request_id, message="Invitation declined")


# Users


def _users_route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    method: str,
    user_id: str,
) -> dict[str, Any] | None:
    target = principal.sub if user_id == "me" else user_id
    if method == "GET":
        user = repo.get_user(target)
        if user is None:
            raise NotFoundError("user", target)
        return ok(200, _user_to_json(user), request_id)
    if method == "PATCH":
        if target != principal.sub:
            raise ForbiddenError("users can only update their own profile")
        update = UserUpdate.from_payload(_body_or_error(event))
        return ok(200, _user_to_json(repo.update_user(target, update)), request_id)
    return None


def _route(
    repo: BoardRepository,
    principal: Principal,
    event: dict[str, Any],
    request_id: str,
    wide_event: dict[str, Any],
) -> dict[str, Any] | None:
    method = str(event.get("httpMethod") or "").upper()
    segments = route_segments(event)
    if len(segments) < 2 or segments[0] != "api":
        return None
    rest = segments[1:]

    if rest[0] == "boards":
        # /api/boards
        if len(rest) == 1:
            if method == "GET":
                return _list_boards(repo, principal, request_id)
            if method == "POST":
                return _create_board(repo, principal, event, request_id)
            return None
        board_id = rest[1]
        wide_event["board_id"] = board_id
        # /api/boards/{boardId}
        if len(rest) == 2:
            return _board_route(repo, principal, event, request_id, method, board_id, wide_event)
        # /api/boards/{boardId}/invitations
        if rest[2:] == ["invitations"] and method == "POST":
            return _invite(repo, principal, event, request_id, board_id)
        if rest[2] != "cards":
            return None
        # /api/boards/{boardId}/cards
        if len(rest) == 3:
            return _cards_route(repo, principal, event, request_id, method, board_id)
        card_id = rest[3]
        wide_event["card_id"] = card_id
        # /api/boards/{boardId}/cards/{cardId}
        if len(rest) == 4:
            return _card_route(repo, principal, event, request_id, method, board_id, card_id, wide_event)
        if rest[4] != "tasks":
            return None
        # /api/boards/{boardId}/cards/{cardId}/tasks
        if len(rest) == 5:
            return _tasks_route(repo, principal, event, request_id, method, board_id, card_id)
        # /api/boards/{boardId}/cards/{cardId}/tasks/{taskId}
        if len(rest) == 6:
            wide_event["task_id"] = rest[5]
            return _task_route(repo, principal, event, request_id, method, board_id, card_id, rest[5], wide_event)
        return None

    # /api/cards
    if rest == ["cards"] and method == "GET":
        return ok(200, repo.list_user_cards(principal.sub), request_id)

    # /api/invitations
    if rest == ["invitations"] and method == "GET":
        return ok(200, repo.list_user_invitations(principal.sub), request_id)

    # /api/invitations/{invitationId}/{accept|decline}
    if len(rest) == 3 and rest[0] == "invitations" and rest[2] in {"accept", "decline"} and method == "POST":
        wide_event["invitation_id"] = rest[1]
        return _answer_invitation(repo, principal, request_id, rest[1], rest[2])

    # /api/users
    if rest == ["users"] and method == "GET":
        return ok(200, [_user_to_json(u) for u in repo.list_users()], request_id)

    # /api/users/{userId|me}
    if len(rest) == 2 and rest[0] == "users":
        return _users_route(repo, principal, event, request_id, method, rest[1])

    return None


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = request_id_of(event)
    wide_event = new_wide_event("mini_trello_boards", event, request_id, SCHEMA_VERSION)

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

        repo = BoardRepository(_store())
        try:
            resp = _route(repo, principal, event, request_id, wide_event)
        finally:
            if repo.warnings:
                wide_event["warnings"] = repo.warnings
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
