from __future__ import annotations

import secrets
import struct
import time
import uuid

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
DOC_ID_BYTES = 16
DOC_ID_LENGTH = 22
VERIFICATION_CODE_DIGITS = 6


def base58_doc_id(raw: bytes) -> str:
    if not isinstance(raw, (bytes, bytearray)) or len(raw) != DOC_ID_BYTES:
        raise ValueError("document ids are built from exactly 16 bytes")
    n = int.from_bytes(raw, "big")
    out: list[str] = []
    while n:
        n, rem = divmod(n, 58)
        out.append(BASE58_ALPHABET[rem])
    text = "".join(reversed(out))
    # Left-pad with the zero digit so every id has the same width.
    return text.rjust(DOC_ID_LENGTH, BASE58_ALPHABET[0])


def new_doc_id(now_ms: int | None = None) -> str:
    """Time-ordered document id (UUIDv7 layout, Base58 text)."""
    ts_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
    raw = bytearray(struct.pack(">Q", ts_ms)[2:] + secrets.token_bytes(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return base58_doc_id(bytes(raw))


def random_request_id() -> str:
    return base58_doc_id(uuid.uuid4().bytes)


def is_doc_id(value: str) -> bool:
    if not isinstance(value, str) or len(value) != DOC_ID_LENGTH:
        return False
    return all(ch in BASE58_ALPHABET for ch in value)


def new_verification_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(VERIFICATION_CODE_DIGITS))
