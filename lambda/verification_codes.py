from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from board_model import format_ts
from board_model import parse_ts
from doc_ids import new_verification_code
from document_store import VERIFICATION_CODES


CODE_TTL_SECONDS = 10 * 60


class VerificationError(Exception):
    status_code = 400
    code = "VERIFICATION_FAILED"


class CodeNotFoundError(VerificationError):
    status_code = 404
    code = "CODE_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("No verification code found for this email")


class CodeExpiredError(VerificationError):
    code = "CODE_EXPIRED"

    def __init__(self) -> None:
        super().__init__("Verification code has expired")


class CodeMismatchError(VerificationError):
    code = "INVALID_CODE"

    def __init__(self) -> None:
        super().__init__("Invalid verification code")


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


class VerificationCodes:
    """Single-use 6-digit email codes, one live code per email."""

    def __init__(
        self,
        store: Any,
        *,
        clock: Callable[[], datetime] | None = None,
        ttl_seconds: int = CODE_TTL_SECONDS,
        code_factory: Callable[[], str] = new_verification_code,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl = int(ttl_seconds)
        self._new_code = code_factory

    def issue(self, email: str) -> dict[str, Any]:
        """Store a fresh code for ``email``, replacing any earlier one."""
        email_norm = normalize_email(email)
        now = self._clock()
        expires = now + timedelta(seconds=self._ttl)
        doc = {
            "email": email_norm,
            "code": self._new_code(),
            "expiresAt": format_ts(expires),
            # DynamoDB TTL sweeps stale codes; reads still check expiresAt.
            "expiresAtEpoch": int(expires.timestamp()),
            "createdAt": format_ts(now),
        }
        self._store.put(VERIFICATION_CODES, doc)
        return doc

    def verify(self, email: str, code: str) -> None:
        """Check ``code`` against the stored one and consume it on success."""
        email_norm = normalize_email(email)
        doc = self._store.get(VERIFICATION_CODES, email_norm)
        if doc is None:
            raise CodeNotFoundError()
        if self._clock() > parse_ts(str(doc.get("expiresAt") or "")):
            raise CodeExpiredError()
        if not hmac.compare_digest(str(doc.get("code") or ""), str(code or "").strip()):
            raise CodeMismatchError()
        if self._store.delete(VERIFICATION_CODES, email_norm) is None:
            # Consumed by a concurrent request.
            raise CodeNotFoundError()
