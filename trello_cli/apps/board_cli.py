from __future__ import annotations

import argparse
import contextlib
import io
import json
import sys
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

import click
import typer
from dotenv import load_dotenv
from rich.console import Console

from .. import __version__
from ..cli_shared import TRELLO_API_URL
from ..cli_shared import TRELLO_TOKEN
from ..cli_shared import GlobalOpts
from ..cli_shared import OpError
from ..cli_shared import UsageError
from ..cli_shared import _env_or_none
from ..cli_shared import _eprint
from ..cli_shared import _print_json
from ..cli_shared import _require_str


_ERROR_CONSOLE = Console(stderr=True)


def _bootstrap_env() -> None:
    # Discover and load .env without overriding exported process values.
    load_dotenv()


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 30,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            data = resp.read()
            return int(status), hdrs, data
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except URLError as e:
        raise OpError(f"http request failed: {e}") from e


def _api_request(
    *,
    method: str,
    endpoint: str,
    token: str,
    path: str,
    query: dict[str, Any] | None = None,
    body_obj: dict[str, Any] | None = None,
) -> dict[str, Any]:
    ep = endpoint.rstrip("/")
    p = path if path.startswith("/") else f"/{path}"
    query_clean = {
        k: str(v)
        for k, v in (query or {}).items()
        if v is not None and str(v).strip() != ""
    }
    url = f"{ep}{p}"
    if query_clean:
        url += f"?{urlencode(query_clean)}"

    body_bytes = None
    headers: dict[str, str] = {}
    if token:
        headers["authorization"] = f"Bearer {token}"
    if body_obj is not None:
        body_bytes = json.dumps(body_obj, separators=(",", ":")).encode("utf-8")
        headers["content-type"] = "application/json"

    status, _hdrs, data = _http_request(
        method=method,
        url=url,
        headers=headers,
        body=body_bytes,
    )
    text = data.decode("utf-8", errors="replace")
    parsed: Any
    try:
        parsed = json.loads(text) if text else {}
    except ValueError:
        parsed = {"raw": text}

    if status < 200 or status >= 300:
        if isinstance(parsed, dict):
            msg = str(parsed.get("error") or parsed.get("message") or text).strip()
        else:
            msg = str(parsed)
        raise OpError(f"api request failed: status={status} method={method} path={p} message={msg}")

    if isinstance(parsed, dict):
        return parsed
    return {"data": parsed}


def _endpoint_for(g: GlobalOpts) -> str:
    return _require_str(g.api_url, "api url", hint=f"pass --api-url or set {TRELLO_API_URL}")


def _auth_for(g: GlobalOpts) -> tuple[str, str]:
    endpoint = _endpoint_for(g)
    token = _require_str(g.token, "session token", hint=f"run 'auth signin' and set {TRELLO_TOKEN}, or pass --token")
    return endpoint, token


def _seg(value: str) -> str:
    return quote(str(value or "").strip(), safe="")


def _call(g: GlobalOpts, method: str, path: str, *, body_obj: dict[str, Any] | None = None, query: dict[str, Any] | None = None) -> dict[str, Any]:
    endpoint, token = _auth_for(g)
    return _api_request(
        method=method,
        endpoint=endpoint,
        token=token,
        path=path,
        query=query,
        body_obj=body_obj,
    )


def _data(out: dict[str, Any]) -> Any:
    return out.get("data")


def _items(out: dict[str, Any]) -> list[dict[str, Any]]:
    data = _data(out)
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    text = str(value if value is not None else "").strip()
    if not text:
        return "-"
    return text


def _print_table(*, headers: list[str], rows: list[list[str]], empty_message: str) -> None:
    if not rows:
        sys.stdout.write(f"{empty_message}\n")
        return
    widths: list[int] = [len(h) for h in headers]
    for row in rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))
    header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    divider_line = "  ".join("-" * widths[i] for i in range(len(headers)))
    sys.stdout.write(header_line + "\n")
    sys.stdout.write(divider_line + "\n")
    for row in rows:
        sys.stdout.write("  ".join(row[i].ljust(widths[i]) for i in range(len(headers))) + "\n")


def _done(out: dict[str, Any], msg: str, g: GlobalOpts) -> int:
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    request_id = str(out.get("requestId") or "").strip()
    if request_id:
        msg += f" requestId={request_id}"
    sys.stdout.write(msg + "\n")
    return 0


def _deleted_summary(out: dict[str, Any]) -> str:
    deleted = (_data(out) or {}).get("deleted") or {}
    if not isinstance(deleted, dict):
        return ""
    parts = [f"{k}={deleted[k]}" for k in sorted(deleted) if deleted[k]]
    return " ".join(parts)


# Auth


def cmd_auth_send_code(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _api_request(
        method="POST",
        endpoint=_endpoint_for(g),
        token="",
        path="/api/auth/send-code",
        body_obj={"email": _require_str(args.email, "email", hint="positional EMAIL")},
    )
    msg = str(out.get("message") or "verification code requested")
    code = str((_data(out) or {}).get("code") or "")
    if code:
        msg += f" code={code}"
    return _done(out, msg, g)


def _session_command(args: argparse.Namespace, g: GlobalOpts, path: str, body_obj: dict[str, Any]) -> int:
    out = _api_request(method="POST", endpoint=_endpoint_for(g), token="", path=path, body_obj=body_obj)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    data = _data(out) or {}
    user = data.get("user") or {}
    sys.stdout.write(f"signed in as {_cell(user.get('email'))} userId={_cell(user.get('id'))}\n")
    sys.stdout.write(f"{TRELLO_TOKEN}={data.get('token') or ''}\n")
    return 0


def cmd_auth_signin(args: argparse.Namespace, g: GlobalOpts) -> int:
    return _session_command(args, g, "/api/auth/signin", {"email": args.email, "code": args.code})


def cmd_auth_signup(args: argparse.Namespace, g: GlobalOpts) -> int:
    body: dict[str, Any] = {"email": args.email, "code": args.code}
    if args.display_name:
        body["displayName"] = args.display_name
    return _session_command(args, g, "/api/auth/signup", body)


def cmd_auth_whoami(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", "/api/users/me")
    user = _data(out) or {}
    github = f" github={user.get('githubLogin')}" if user.get("githubConnected") else ""
    return _done(out, f"{_cell(user.get('displayName'))} <{_cell(user.get('email'))}> userId={_cell(user.get('id'))}{github}", g)


# Boards


def cmd_boards_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", "/api/boards")
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows = [
        [_cell(b.get("id")), _cell(b.get("name")), str(len(b.get("members") or [])), _cell(b.get("createdAt"))]
        for b in _items(out)
    ]
    _print_table(headers=["ID", "NAME", "MEMBERS", "CREATED"], rows=rows, empty_message="No boards.")
    return 0


def cmd_boards_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "POST", "/api/boards", body_obj={"name": args.name, "description": args.description or ""})
    board = _data(out) or {}
    return _done(out, f'created board {_cell(board.get("id"))} name="{board.get("name") or ""}"', g)


def cmd_boards_show(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_out = _call(g, "GET", f"/api/boards/{_seg(args.board_id)}")
    cards_out = _call(g, "GET", f"/api/boards/{_seg(args.board_id)}/cards")
    if g.json_output:
        _print_json({"board": _data(board_out), "cards": _data(cards_out)}, pretty=g.pretty)
        return 0
    board = _data(board_out) or {}
    sys.stdout.write(f"{_cell(board.get('name'))} ({_cell(board.get('id'))})\n")
    if board.get("description"):
        sys.stdout.write(f"{board['description']}\n")
    sys.stdout.write(f"owner: {_cell(board.get('ownerId'))}\n")
    sys.stdout.write(f"members: {_cell(board.get('members'))}\n")
    rows = [
        [_cell(c.get("id")), _cell(c.get("name")), str(int(c.get("tasksCount") or 0))]
        for c in _items(cards_out)
    ]
    _print_table(headers=["CARD", "NAME", "TASKS"], rows=rows, empty_message="No cards.")
    return 0


def cmd_boards_update(args: argparse.Namespace, g: GlobalOpts) -> int:
    body = {k: v for k, v in (("name", args.name), ("description", args.description)) if v is not None}
    if not body:
        raise UsageError("provide --name and/or --description")
    out = _call(g, "PATCH", f"/api/boards/{_seg(args.board_id)}", body_obj=body)
    return _done(out, f"updated board {args.board_id}", g)


def cmd_boards_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "DELETE", f"/api/boards/{_seg(args.board_id)}")
    summary = _deleted_summary(out)
    return _done(out, f"deleted board {args.board_id}" + (f" {summary}" if summary else ""), g)


def cmd_boards_invite(args: argparse.Namespace, g: GlobalOpts) -> int:
    member_id = str(args.member_id or "").strip()
    email = str(args.email or "").strip()
    if bool(member_id) == bool(email):
        raise UsageError("provide exactly one of --member-id or --email")
    body = {"memberId": member_id} if member_id else {"memberEmail": email}
    out = _call(g, "POST", f"/api/boards/{_seg(args.board_id)}/invitations", body_obj=body)
    inv = _data(out) or {}
    return _done(out, f"invited {_cell(inv.get('memberEmail') or inv.get('memberId'))} invitationId={_cell(inv.get('id'))}", g)


# Cards


def cmd_cards_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    path = f"/api/boards/{_seg(args.board_id)}/cards" if args.board_id else "/api/cards"
    out = _call(g, "GET", path)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows = [
        [_cell(c.get("id")), _cell(c.get("boardId")), _cell(c.get("name")), str(int(c.get("tasksCount") or 0))]
        for c in _items(out)
    ]
    _print_table(headers=["ID", "BOARD", "NAME", "TASKS"], rows=rows, empty_message="No cards.")
    return 0


def cmd_cards_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(
        g,
        "POST",
        f"/api/boards/{_seg(args.board_id)}/cards",
        body_obj={"name": args.name, "description": args.description or ""},
    )
    card = _data(out) or {}
    return _done(out, f'created card {_cell(card.get("id"))} name="{card.get("name") or ""}"', g)


def cmd_cards_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "DELETE", f"/api/boards/{_seg(args.board_id)}/cards/{_seg(args.card_id)}")
    summary = _deleted_summary(out)
    return _done(out, f"deleted card {args.card_id}" + (f" {summary}" if summary else ""), g)


# Tasks


def _tasks_path(args: argparse.Namespace) -> str:
    return f"/api/boards/{_seg(args.board_id)}/cards/{_seg(args.card_id)}/tasks"


def cmd_tasks_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", _tasks_path(args))
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    count = 0
    for item in _items(out):
        count += 1
        sys.stdout.write(
            f"- {_cell(item.get('id'))} [{_cell(item.get('status'))}] "
            f"priority={_cell(item.get('priority'))} assigned={_cell(item.get('assignedTo'))} "
            f"title={_cell(item.get('title'))}\n"
        )
    if count == 0:
        sys.stdout.write("No tasks.\n")
    sys.stdout.write(f"items: {count}\n")
    return 0


def cmd_tasks_add(args: argparse.Namespace, g: GlobalOpts) -> int:
    body: dict[str, Any] = {"title": args.title, "description": args.description or ""}
    for key, value in (("status", args.status), ("priority", args.priority), ("deadline", args.deadline)):
        if value:
            body[key] = value
    if args.assign:
        body["assignedTo"] = list(args.assign)
    out = _call(g, "POST", _tasks_path(args), body_obj=body)
    task = _data(out) or {}
    return _done(out, f"added task {_cell(task.get('id'))} [{_cell(task.get('status'))}]", g)


def cmd_tasks_update(args: argparse.Namespace, g: GlobalOpts) -> int:
    body: dict[str, Any] = {}
    for key, value in (
        ("title", args.title),
        ("description", args.description),
        ("status", args.status),
        ("priority", args.priority),
        ("deadline", args.deadline),
    ):
        if value is not None:
            body[key] = value
    if args.assign:
        body["assignedTo"] = list(args.assign)
    for field in args.clear or []:
        body[field] = None
    if not body:
        raise UsageError("nothing to update")
    out = _call(g, "PATCH", f"{_tasks_path(args)}/{_seg(args.task_id)}", body_obj=body)
    task = _data(out) or {}
    return _done(out, f"updated task {args.task_id} [{_cell(task.get('status'))}]", g)


def cmd_tasks_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "DELETE", f"{_tasks_path(args)}/{_seg(args.task_id)}")
    summary = _deleted_summary(out)
    return _done(out, f"deleted task {args.task_id}" + (f" {summary}" if summary else ""), g)


# Invitations


def cmd_invitations_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", "/api/invitations")
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows = [
        [_cell(i.get("id")), _cell(i.get("boardId")), _cell(i.get("boardOwnerId")), _cell(i.get("createdAt"))]
        for i in _items(out)
    ]
    _print_table(headers=["ID", "BOARD", "FROM", "CREATED"], rows=rows, empty_message="No pending invitations.")
    return 0


def _answer(args: argparse.Namespace, g: GlobalOpts, action: str) -> int:
    out = _call(g, "POST", f"/api/invitations/{_seg(args.invitation_id)}/{action}")
    inv = _data(out) or {}
    return _done(out, f"invitation {args.invitation_id} {_cell(inv.get('status'))} board={_cell(inv.get('boardId'))}", g)


def cmd_invitations_accept(args: argparse.Namespace, g: GlobalOpts) -> int:
    return _answer(args, g, "accept")


def cmd_invitations_decline(args: argparse.Namespace, g: GlobalOpts) -> int:
    return _answer(args, g, "decline")


# GitHub


def cmd_github_repos(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", "/api/github/repositories")
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows = [
        [_cell(r.get("full_name")), "private" if r.get("private") else "public", _cell(r.get("updated_at"))]
        for r in _items(out)
    ]
    _print_table(headers=["REPOSITORY", "VISIBILITY", "UPDATED"], rows=rows, empty_message="No repositories.")
    return 0


def _attachments_base(args: argparse.Namespace) -> str:
    return (
        f"/api/github/boards/{_seg(args.board_id)}/cards/{_seg(args.card_id)}"
        f"/tasks/{_seg(args.task_id)}"
    )


def cmd_github_attach(args: argparse.Namespace, g: GlobalOpts) -> int:
    body: dict[str, Any] = {"type": args.type}
    if args.number is not None:
        body["number"] = int(args.number)
    for key, value in (("sha", args.sha), ("title", args.title), ("url", args.url)):
        if value:
            body[key] = value
    out = _call(g, "POST", f"{_attachments_base(args)}/github-attach", body_obj=body)
    data = _data(out) or {}
    ref = data.get("sha") or (f"#{data['number']}" if data.get("number") is not None else "")
    return _done(out, f"attached {_cell(data.get('type'))} {_cell(ref)} attachmentId={_cell(data.get('attachmentId'))}", g)


def cmd_github_attachments(args: argparse.Namespace, g: GlobalOpts) -> int:
    out = _call(g, "GET", f"{_attachments_base(args)}/github-attachments")
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows = [
        [
            _cell(a.get("attachmentId")),
            _cell(a.get("type")),
            _cell(a.get("sha") or a.get("number")),
            _cell(a.get("title")),
        ]
        for a in _items(out)
    ]
    _print_table(headers=["ID", "TYPE", "REF", "TITLE"], rows=rows, empty_message="No attachments.")
    return 0


def cmd_github_detach(args: argparse.Namespace, g: GlobalOpts) -> int:
    _call(g, "DELETE", f"{_attachments_base(args)}/github-attachments/{_seg(args.attachment_id)}")
    if g.json_output:
        _print_json({"attachmentId": args.attachment_id, "deleted": True}, pretty=g.pretty)
        return 0
    sys.stdout.write(f"removed attachment {args.attachment_id}\n")
    return 0


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _root_help_text(*, root_app: typer.Typer, prog_name: str) -> str:
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        try:
            root_app(args=["--help"], prog_name=prog_name, standalone_mode=False)
        except (typer.Exit, click.ClickException):
            pass
    return str(buf.getvalue() or "").strip()


def _render_usage_error_with_help(
    *,
    message: str,
    ctx: click.Context | None = None,
    fallback_help: str = "",
) -> None:
    _rich_error(message)
    help_text = ""
    if isinstance(ctx, click.Context):
        help_text = str(ctx.get_help() or "").strip()
    if not help_text:
        help_text = str(fallback_help or "").strip()
    if help_text:
        _eprint("")
        _eprint(help_text)


def _namespace(**kwargs: Any) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"mini-trello {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="mini-trello",
    help="Boards, cards and tasks from the terminal (default: human-readable output; use --json for raw API responses)",
    no_args_is_help=True,
    add_completion=False,
)

auth_app = typer.Typer(help="Email code and session helpers", no_args_is_help=True)
boards_app = typer.Typer(help="Board helpers", no_args_is_help=True)
cards_app = typer.Typer(help="Card helpers", no_args_is_help=True)
tasks_app = typer.Typer(help="Task helpers", no_args_is_help=True)
invitations_app = typer.Typer(help="Board invitation helpers", no_args_is_help=True)
github_app = typer.Typer(help="GitHub repositories and task attachments", no_args_is_help=True)

app.add_typer(auth_app, name="auth")
app.add_typer(boards_app, name="boards")
app.add_typer(cards_app, name="cards")
app.add_typer(tasks_app, name="tasks")
app.add_typer(invitations_app, name="invitations")
app.add_typer(github_app, name="github")


@app.callback()
def app_callback(
    ctx: typer.Context,
    api_url: str | None = typer.Option(None, "--api-url", help=f"API base URL (env: {TRELLO_API_URL})"),
    token: str | None = typer.Option(None, "--token", help=f"Session token (env: {TRELLO_TOKEN})"),
    json_output: bool = typer.Option(False, "--json", help="Emit raw JSON API responses"),
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    if not isinstance(ctx.obj, dict):
        ctx.obj = {}
    ctx.obj["g"] = GlobalOpts(
        api_url=(api_url or _env_or_none(TRELLO_API_URL) or "").strip(),
        token=(token or _env_or_none(TRELLO_TOKEN) or "").strip(),
        pretty=bool(pretty),
        json_output=bool(json_output),
    )


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    if isinstance(root.obj, dict) and isinstance(root.obj.get("g"), GlobalOpts):
        return root.obj["g"]
    return GlobalOpts(
        api_url=_env_or_none(TRELLO_API_URL) or "",
        token=_env_or_none(TRELLO_TOKEN) or "",
        pretty=False,
    )


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = _namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


_BOARD_ARG = typer.Argument(..., help="Board ID")
_CARD_ARG = typer.Argument(..., help="Card ID")
_TASK_ARG = typer.Argument(..., help="Task ID")


@auth_app.command("send-code", help="Email a 6-digit verification code.")
def auth_send_code(ctx: typer.Context, email: str = typer.Argument(..., help="Account email")) -> None:
    _invoke(ctx, cmd_auth_send_code, email=email)


@auth_app.command("signup", help="Create an account with an emailed code and print the session token.")
def auth_signup(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    code: str = typer.Argument(..., help="6-digit verification code"),
    display_name: str | None = typer.Option(None, "--display-name", help="Display name (default: email local part)"),
) -> None:
    _invoke(ctx, cmd_auth_signup, email=email, code=code, display_name=display_name)


@auth_app.command("signin", help="Sign in with an emailed code and print the session token.")
def auth_signin(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    code: str = typer.Argument(..., help="6-digit verification code"),
) -> None:
    _invoke(ctx, cmd_auth_signin, email=email, code=code)


@auth_app.command("whoami", help="Show the signed-in user.")
def auth_whoami(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_auth_whoami)


@boards_app.command("list", help="List boards you are a member of.")
def boards_list(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_boards_list)


@boards_app.command("create", help="Create a board owned by you.")
def boards_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Board name"),
    description: str | None = typer.Option(None, "--description", help="Board description"),
) -> None:
    _invoke(ctx, cmd_boards_create, name=name, description=description)


@boards_app.command("show", help="Show a board and its cards.")
def boards_show(ctx: typer.Context, board_id: str = _BOARD_ARG) -> None:
    _invoke(ctx, cmd_boards_show, board_id=board_id)


@boards_app.command("update", help="Rename a board or change its description (owner only).")
def boards_update(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    name: str | None = typer.Option(None, "--name", help="New board name"),
    description: str | None = typer.Option(None, "--description", help="New board description"),
) -> None:
    _invoke(ctx, cmd_boards_update, board_id=board_id, name=name, description=description)


@boards_app.command("delete", help="Delete a board with its cards, tasks and invitations (owner only).")
def boards_delete(ctx: typer.Context, board_id: str = _BOARD_ARG) -> None:
    _invoke(ctx, cmd_boards_delete, board_id=board_id)


@boards_app.command("invite", help="Invite a user to a board by user ID or email (owner only).")
def boards_invite(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    member_id: str | None = typer.Option(None, "--member-id", help="User ID to invite"),
    email: str | None = typer.Option(None, "--email", help="Email of the user to invite"),
) -> None:
    _invoke(ctx, cmd_boards_invite, board_id=board_id, member_id=member_id, email=email)


@cards_app.command("list", help="List cards on a board, or your cards across boards when no board is given.")
def cards_list(ctx: typer.Context, board_id: str | None = typer.Argument(None, help="Board ID")) -> None:
    _invoke(ctx, cmd_cards_list, board_id=board_id)


@cards_app.command("create", help="Create a card on a board.")
def cards_create(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    name: str = typer.Argument(..., help="Card name"),
    description: str | None = typer.Option(None, "--description", help="Card description"),
) -> None:
    _invoke(ctx, cmd_cards_create, board_id=board_id, name=name, description=description)


@cards_app.command("delete", help="Delete a card and its tasks.")
def cards_delete(ctx: typer.Context, board_id: str = _BOARD_ARG, card_id: str = _CARD_ARG) -> None:
    _invoke(ctx, cmd_cards_delete, board_id=board_id, card_id=card_id)


@tasks_app.command("list", help="List tasks on a card in board order.")
def tasks_list(ctx: typer.Context, board_id: str = _BOARD_ARG, card_id: str = _CARD_ARG) -> None:
    _invoke(ctx, cmd_tasks_list, board_id=board_id, card_id=card_id)


@tasks_app.command("add", help="Add a task to a card.")
def tasks_add(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", help="Task description"),
    status: str | None = typer.Option(None, "--status", help="icebox|backlog|ongoing|waiting-review|done"),
    priority: str | None = typer.Option(None, "--priority", help="low|medium|high|critical"),
    deadline: str | None = typer.Option(None, "--deadline", help="ISO-8601 deadline"),
    assign: list[str] | None = typer.Option(None, "--assign", help="Board member user ID (repeatable)"),
) -> None:
    _invoke(
        ctx,
        cmd_tasks_add,
        board_id=board_id,
        card_id=card_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        deadline=deadline,
        assign=assign or [],
    )


@tasks_app.command("update", help="Change task fields; --clear priority|deadline removes a field.")
def tasks_update(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    task_id: str = _TASK_ARG,
    title: str | None = typer.Option(None, "--title", help="New title"),
    description: str | None = typer.Option(None, "--description", help="New description"),
    status: str | None = typer.Option(None, "--status", help="icebox|backlog|ongoing|waiting-review|done"),
    priority: str | None = typer.Option(None, "--priority", help="low|medium|high|critical"),
    deadline: str | None = typer.Option(None, "--deadline", help="ISO-8601 deadline"),
    assign: list[str] | None = typer.Option(None, "--assign", help="Replace assignees (repeatable)"),
    clear: list[str] | None = typer.Option(None, "--clear", help="Field to remove: priority|deadline (repeatable)"),
) -> None:
    _invoke(
        ctx,
        cmd_tasks_update,
        board_id=board_id,
        card_id=card_id,
        task_id=task_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        deadline=deadline,
        assign=assign or [],
        clear=clear or [],
    )


@tasks_app.command("delete", help="Delete a task and its GitHub attachments.")
def tasks_delete(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    task_id: str = _TASK_ARG,
) -> None:
    _invoke(ctx, cmd_tasks_delete, board_id=board_id, card_id=card_id, task_id=task_id)


@invitations_app.command("list", help="List your pending invitations.")
def invitations_list(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_invitations_list)


@invitations_app.command("accept", help="Accept an invitation and join the board.")
def invitations_accept(ctx: typer.Context, invitation_id: str = typer.Argument(..., help="Invitation ID")) -> None:
    _invoke(ctx, cmd_invitations_accept, invitation_id=invitation_id)


@invitations_app.command("decline", help="Decline an invitation.")
def invitations_decline(ctx: typer.Context, invitation_id: str = typer.Argument(..., help="Invitation ID")) -> None:
    _invoke(ctx, cmd_invitations_decline, invitation_id=invitation_id)


@github_app.command("repos", help="List repositories of the connected GitHub account.")
def github_repos(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_github_repos)


@github_app.command("attach", help="Attach a pull request, commit or issue to a task.")
def github_attach(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    task_id: str = _TASK_ARG,
    type: str = typer.Option(..., "--type", help="pull_request|commit|issue"),
    number: int | None = typer.Option(None, "--number", help="Pull request or issue number"),
    sha: str | None = typer.Option(None, "--sha", help="Commit SHA"),
    title: str | None = typer.Option(None, "--title", help="Display title"),
    url: str | None = typer.Option(None, "--url", help="GitHub URL"),
) -> None:
    _invoke(
        ctx,
        cmd_github_attach,
        board_id=board_id,
        card_id=card_id,
        task_id=task_id,
        type=type,
        number=number,
        sha=sha,
        title=title,
        url=url,
    )


@github_app.command("attachments", help="List GitHub attachments of a task.")
def github_attachments(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    task_id: str = _TASK_ARG,
) -> None:
    _invoke(ctx, cmd_github_attachments, board_id=board_id, card_id=card_id, task_id=task_id)


@github_app.command("detach", help="Remove a GitHub attachment from a task.")
def github_detach(
    ctx: typer.Context,
    board_id: str = _BOARD_ARG,
    card_id: str = _CARD_ARG,
    task_id: str = _TASK_ARG,
    attachment_id: str = typer.Argument(..., help="Attachment ID"),
) -> None:
    _invoke(
        ctx,
        cmd_github_detach,
        board_id=board_id,
        card_id=card_id,
        task_id=task_id,
        attachment_id=attachment_id,
    )


def _run_cli(*, root_app: typer.Typer, prog_name: str, argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    _bootstrap_env()
    try:
        result = root_app(args=argv, prog_name=prog_name, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error_with_help(
            message=str(e),
            fallback_help=_root_help_text(root_app=root_app, prog_name=prog_name),
        )
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    return _run_cli(root_app=app, prog_name="mini-trello", argv=argv)


if __name__ == "__main__":
    raise SystemExit(main())
