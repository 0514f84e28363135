import argparse
import json
import re

import pytest
from typer.testing import CliRunner

from trello_cli.apps.board_cli import (
    GlobalOpts,
    OpError,
    UsageError,
    _api_request,
    app,
    cmd_auth_send_code,
    cmd_auth_signin,
    cmd_boards_create,
    cmd_boards_delete,
    cmd_boards_invite,
    cmd_boards_list,
    cmd_cards_list,
    cmd_github_attach,
    cmd_invitations_accept,
    cmd_invitations_list,
    cmd_tasks_add,
    cmd_tasks_list,
    cmd_tasks_update,
    main,
)

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")

_MODULE = "trello_cli.apps.board_cli"


def _plain(s: str) -> str:
    return _ANSI_RE.sub("", s)


def _g(*, json_output: bool = False, token: str = "a.b.c") -> GlobalOpts:
    return GlobalOpts(
        api_url="https://example.invalid/prod",
        token=token,
        pretty=False,
        json_output=json_output,
    )


def _fake_request(captured: dict, response: dict):
    def fake_request(**kwargs):
        captured.update(kwargs)
        return response

    return fake_request


def test_cmd_boards_create_posts_board(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(captured, {"success": True, "data": {"id": "b1", "name": "alpha"}, "requestId": "r-1"}),
    )

    assert cmd_boards_create(argparse.Namespace(name="alpha", description=None), _g()) == 0

    out = capsys.readouterr().out
    assert 'created board b1 name="alpha" requestId=r-1' in out
    assert captured["method"] == "POST"
    assert captured["path"] == "/api/boards"
    assert captured["token"] == "a.b.c"
    assert captured["body_obj"] == {"name": "alpha", "description": ""}


def test_cmd_boards_create_json_output(monkeypatch, capsys):
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request({}, {"success": True, "data": {"id": "b1", "name": "alpha"}}),
    )

    assert cmd_boards_create(argparse.Namespace(name="alpha", description=None), _g(json_output=True)) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["data"]["id"] == "b1"


def test_cmd_boards_list_prints_table(monkeypatch, capsys):
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            {},
            {
                "success": True,
                "data": [
                    {"id": "b1", "name": "Roadmap", "members": ["u-1", "u-2"], "createdAt": "2026-05-01T00:00:00Z"},
                ],
            },
        ),
    )

    assert cmd_boards_list(argparse.Namespace(), _g()) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["ID", "NAME", "MEMBERS", "CREATED"]
    assert lines[2].split() == ["b1", "Roadmap", "2", "2026-05-01T00:00:00Z"]


def test_cmd_boards_list_empty(monkeypatch, capsys):
    monkeypatch.setattr(f"{_MODULE}._api_request", _fake_request({}, {"success": True, "data": []}))

    assert cmd_boards_list(argparse.Namespace(), _g()) == 0
    assert capsys.readouterr().out == "No boards.\n"


def test_cmd_boards_delete_reports_cascade(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            captured,
            {"success": True, "data": {"boardId": "b1", "deleted": {"cards": 2, "tasks": 5, "attachments": 0, "invitations": 1}}},
        ),
    )

    assert cmd_boards_delete(argparse.Namespace(board_id="b1"), _g()) == 0

    assert captured["method"] == "DELETE"
    assert captured["path"] == "/api/boards/b1"
    assert "deleted board b1 cards=2 invitations=1 tasks=5" in capsys.readouterr().out


def test_cmd_boards_invite_needs_exactly_one_target():
    with pytest.raises(UsageError, match="exactly one of --member-id or --email"):
        cmd_boards_invite(argparse.Namespace(board_id="b1", member_id=None, email=None), _g())
    with pytest.raises(UsageError):
        cmd_boards_invite(argparse.Namespace(board_id="b1", member_id="u-2", email="b@example.com"), _g())


def test_cmd_boards_invite_by_email(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(captured, {"success": True, "data": {"id": "i1", "memberEmail": "b@example.com"}}),
    )

    assert cmd_boards_invite(argparse.Namespace(board_id="b1", member_id=None, email="b@example.com"), _g()) == 0

    assert captured["path"] == "/api/boards/b1/invitations"
    assert captured["body_obj"] == {"memberEmail": "b@example.com"}
    assert "invited b@example.com invitationId=i1" in capsys.readouterr().out


def test_cmd_cards_list_without_board_lists_my_cards(monkeypatch):
    captured: dict = {}
    monkeypatch.setattr(f"{_MODULE}._api_request", _fake_request(captured, {"success": True, "data": []}))

    assert cmd_cards_list(argparse.Namespace(board_id=None), _g()) == 0
    assert captured["path"] == "/api/cards"


def test_cmd_tasks_add_sends_optional_fields(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(captured, {"success": True, "data": {"id": "t1", "status": "backlog"}}),
    )
    args = argparse.Namespace(
        board_id="b1",
        card_id="c1",
        title="Ship it",
        description=None,
        status="backlog",
        priority="high",
        deadline=None,
        assign=["u-2"],
    )

    assert cmd_tasks_add(args, _g()) == 0

    assert captured["path"] == "/api/boards/b1/cards/c1/tasks"
    assert captured["body_obj"] == {
        "title": "Ship it",
        "description": "",
        "status": "backlog",
        "priority": "high",
        "assignedTo": ["u-2"],
    }
    assert "added task t1 [backlog]" in capsys.readouterr().out


def test_cmd_tasks_update_clear_sends_null(monkeypatch):
    captured: dict = {}
    monkeypatch.setattr(f"{_MODULE}._api_request", _fake_request(captured, {"success": True, "data": {"status": "done"}}))
    args = argparse.Namespace(
        board_id="b1",
        card_id="c1",
        task_id="t1",
        title=None,
        description=None,
        status="done",
        priority=None,
        deadline=None,
        assign=[],
        clear=["priority"],
    )

    assert cmd_tasks_update(args, _g()) == 0

    assert captured["method"] == "PATCH"
    assert captured["path"] == "/api/boards/b1/cards/c1/tasks/t1"
    assert captured["body_obj"] == {"status": "done", "priority": None}


def test_cmd_tasks_update_without_changes_is_usage_error():
    args = argparse.Namespace(
        board_id="b1",
        card_id="c1",
        task_id="t1",
        title=None,
        description=None,
        status=None,
        priority=None,
        deadline=None,
        assign=[],
        clear=[],
    )
    with pytest.raises(UsageError, match="nothing to update"):
        cmd_tasks_update(args, _g())


def test_cmd_tasks_list_prints_lines(monkeypatch, capsys):
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            {},
            {
                "success": True,
                "data": [
                    {"id": "t1", "status": "ongoing", "priority": "high", "assignedTo": ["u-1", "u-2"], "title": "Docs"},
                    {"id": "t2", "status": "icebox", "assignedTo": [], "title": "Later"},
                ],
            },
        ),
    )

    assert cmd_tasks_list(argparse.Namespace(board_id="b1", card_id="c1"), _g()) == 0

    out = capsys.readouterr().out
    assert "- t1 [ongoing] priority=high assigned=u-1,u-2 title=Docs" in out
    assert "- t2 [icebox] priority=- assigned=- title=Later" in out
    assert "items: 2" in out


def test_cmd_invitations_list_shows_inviting_owner(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            captured,
            {
                "success": True,
                "data": [
                    {
                        "id": "i1",
                        "boardId": "b1",
                        "boardOwnerId": "owner-1",
                        "memberId": "u-2",
                        "status": "pending",
                        "createdAt": "2026-01-01",
                    }
                ],
            },
        ),
    )

    assert cmd_invitations_list(argparse.Namespace(), _g()) == 0

    assert captured["method"] == "GET"
    assert captured["path"] == "/api/invitations"
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["ID", "BOARD", "FROM", "CREATED"]
    assert lines[2].split() == ["i1", "b1", "owner-1", "2026-01-01"]


def test_cmd_invitations_list_empty(monkeypatch, capsys):
    monkeypatch.setattr(f"{_MODULE}._api_request", _fake_request({}, {"success": True, "data": []}))

    assert cmd_invitations_list(argparse.Namespace(), _g()) == 0
    assert capsys.readouterr().out == "No pending invitations.\n"


def test_cmd_invitations_accept(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(captured, {"success": True, "data": {"id": "i1", "status": "accepted", "boardId": "b1"}}),
    )

    assert cmd_invitations_accept(argparse.Namespace(invitation_id="i1"), _g()) == 0

    assert captured["path"] == "/api/invitations/i1/accept"
    assert "invitation i1 accepted board=b1" in capsys.readouterr().out


def test_cmd_github_attach_pull_request(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            captured,
            {"success": True, "data": {"attachmentId": "a1", "type": "pull_request", "number": 12, "sha": None}},
        ),
    )
    args = argparse.Namespace(
        board_id="b1",
        card_id="c1",
        task_id="t1",
        type="pull_request",
        number=12,
        sha=None,
        title="Fix",
        url=None,
    )

    assert cmd_github_attach(args, _g()) == 0

    assert captured["path"] == "/api/github/boards/b1/cards/c1/tasks/t1/github-attach"
    assert captured["body_obj"] == {"type": "pull_request", "number": 12, "title": "Fix"}
    assert "attached pull_request #12 attachmentId=a1" in capsys.readouterr().out


def test_cmd_auth_send_code_does_not_need_token(monkeypatch, capsys):
    captured: dict = {}
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(captured, {"success": True, "message": "Verification code generated", "data": {"code": "123456"}}),
    )

    assert cmd_auth_send_code(argparse.Namespace(email="a@example.com"), _g(token="")) == 0

    assert captured["token"] == ""
    assert captured["path"] == "/api/auth/send-code"
    assert "Verification code generated code=123456" in capsys.readouterr().out


def test_cmd_auth_signin_prints_token_line(monkeypatch, capsys):
    monkeypatch.setattr(
        f"{_MODULE}._api_request",
        _fake_request(
            {},
            {"success": True, "data": {"token": "jwt-1", "user": {"id": "u-1", "email": "a@example.com"}}},
        ),
    )

    assert cmd_auth_signin(argparse.Namespace(email="a@example.com", code="123456"), _g(token="")) == 0

    out = capsys.readouterr().out
    assert "signed in as a@example.com userId=u-1" in out
    assert "TRELLO_TOKEN=jwt-1" in out


def test_commands_require_token():
    with pytest.raises(UsageError, match="missing session token"):
        cmd_boards_list(argparse.Namespace(), _g(token=""))


def test_api_request_raises_op_error_with_envelope_message(monkeypatch):
    def fake_http(**kwargs):
        return 403, {}, json.dumps({"success": False, "error": "not a member of board: b1"}).encode("utf-8")

    monkeypatch.setattr(f"{_MODULE}._http_request", fake_http)

    with pytest.raises(OpError, match="status=403 method=GET path=/api/boards/b1 message=not a member of board: b1"):
        _api_request(method="GET", endpoint="https://example.invalid/prod/", token="t", path="api/boards/b1")


def test_api_request_builds_url_and_headers(monkeypatch):
    captured: dict = {}

    def fake_http(**kwargs):
        captured.update(kwargs)
        return 200, {}, b'{"success":true,"data":[]}'

    monkeypatch.setattr(f"{_MODULE}._http_request", fake_http)

    out = _api_request(
        method="POST",
        endpoint="https://example.invalid/prod/",
        token="t",
        path="/api/boards",
        query={"empty": "", "x": 1},
        body_obj={"name": "a"},
    )

    assert out == {"success": True, "data": []}
    assert captured["url"] == "https://example.invalid/prod/api/boards?x=1"
    assert captured["headers"]["authorization"] == "Bearer t"
    assert captured["headers"]["content-type"] == "application/json"
    assert json.loads(captured["body"]) == {"name": "a"}


def test_typer_includes_groups_in_help():
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    output = _plain(result.output)
    for group in ("auth", "boards", "cards", "tasks", "invitations", "github"):
        assert group in output
    assert "--json" in output


def test_root_json_flag_reaches_command(monkeypatch):
    captured: dict = {}

    def fake_cmd(args, g):
        captured["json_output"] = g.json_output
        captured["api_url"] = g.api_url
        return 0

    monkeypatch.setattr(f"{_MODULE}.cmd_boards_list", fake_cmd)
    runner = CliRunner()
    result = runner.invoke(app, ["--json", "--api-url", "https://x.invalid", "boards", "list"])
    assert result.exit_code == 0
    assert captured == {"json_output": True, "api_url": "https://x.invalid"}


def test_main_maps_op_error_to_exit_1(monkeypatch, capsys):
    def failing_cmd(_args, _g):
        raise OpError("api request failed: status=500")

    monkeypatch.setattr(f"{_MODULE}.cmd_boards_list", failing_cmd)
    monkeypatch.setattr(f"{_MODULE}._bootstrap_env", lambda: None)

    assert main(["boards", "list"]) == 1
    assert "api request failed" in _plain(capsys.readouterr().err)


def test_main_maps_usage_error_to_exit_2(monkeypatch):
    monkeypatch.setattr(f"{_MODULE}._bootstrap_env", lambda: None)
    monkeypatch.delenv("TRELLO_TOKEN", raising=False)
    monkeypatch.delenv("TRELLO_API_URL", raising=False)

    assert main(["boards", "list"]) == 2
