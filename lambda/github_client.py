from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.parse import quote
from urllib.parse import urlencode
from urllib.request import Request
from urllib.request import urlopen


GITHUB_API_URL = "https://api.github.com"
GITHUB_OAUTH_URL = "https://github.com/login/oauth"
OAUTH_SCOPE = "user:email,repo"
USER_AGENT = "mini-trello"


class GitHubError(Exception):
    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = int(status or 0)


def http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 15,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            return int(status), hdrs, resp.read()
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers or {}).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except URLError as e:
        raise GitHubError(f"github request failed: {e.reason}") from e


HttpFn = Callable[..., tuple[int, dict[str, str], bytes]]


def _decode(status: int, data: bytes) -> Any:
    try:
        return json.loads(data.decode("utf-8")) if data else None
    except Exception as e:
        raise GitHubError(f"github returned invalid JSON (status={status})", status) from e


def _failure_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error"):
            msg = str(payload.get(key) or "").strip()
            if msg:
                return msg
    return fallback


class GitHubOAuth:
    """GitHub OAuth app: authorize URL and code exchange."""

    def __init__(self, client_id: str, client_secret: str, callback_url: str, *, http: HttpFn = http_request) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self._http = http

    def authorize_url(self, state: str = "") -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "scope": OAUTH_SCOPE,
        }
        if state:
            params["state"] = state
        return f"{GITHUB_OAUTH_URL}/authorize?{urlencode(params)}"

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token ("" when GitHub refuses)."""
        body = urlencode(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.callback_url,
            }
        ).encode("utf-8")
        status, _hdrs, data = self._http(
            method="POST",
            url=f"{GITHUB_OAUTH_URL}/access_token",
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
                "User-Agent": USER_AGENT,
            },
            body=body,
        )
        payload = _decode(status, data)
        if status >= 400:
            raise GitHubError(_failure_message(payload, "GitHub token exchange failed"), status)
        if not isinstance(payload, dict):
            return ""
        return str(payload.get("access_token") or "")


class GitHubClient:
    """REST v3 calls made with a user's OAuth access token."""

    def __init__(self, access_token: str, *, http: HttpFn = http_request, max_workers: int = 4) -> None:
        self._token = access_token
        self._http = http
        self._max_workers = max_workers

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{GITHUB_API_URL}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        status, _hdrs, data = self._http(
            method="GET",
            url=url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": USER_AGENT,
            },
        )
        payload = _decode(status, data)
        if status >= 400:
            raise GitHubError(_failure_message(payload, f"GitHub request failed: GET {path}"), status)
        return payload

    def user(self) -> dict[str, Any]:
        out = self._get("/user")
        return out if isinstance(out, dict) else {}

    def primary_email(self) -> str:
        emails = self._get("/user/emails")
        if not isinstance(emails, list):
            return ""
        for e in emails:
            if isinstance(e, dict) and e.get("primary"):
                return str(e.get("email") or "")
        return ""

    def repositories(self) -> list[dict[str, Any]]:
        out = self._get("/user/repos", {"sort": "updated", "per_page": 100})
        return out if isinstance(out, list) else []

    def repository_info(self, owner: str, repo: str) -> dict[str, Any]:
        base = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        calls = {
            "branches": (f"{base}/branches", None),
            "pulls": (f"{base}/pulls", {"state": "all", "per_page": 50}),
            "issues": (f"{base}/issues", {"state": "all", "per_page": 50}),
            "commits": (f"{base}/commits", {"per_page": 50}),
        }
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {name: pool.submit(self._get, path, params) for name, (path, params) in calls.items()}
            results = {name: (f.result() or []) for name, f in futures.items()}

        # The issues endpoint also lists pull requests.
        issues = [i for i in results["issues"] if isinstance(i, dict) and "pull_request" not in i]
        return {
            "repositoryId": f"{owner}/{repo}",
            "branches": results["branches"],
            "pulls": results["pulls"],
            "issues": issues,
            "commits": results["commits"],
        }
