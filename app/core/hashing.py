from __future__ import annotations

import hashlib
import json
import re
import secrets
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from app.core.clock import as_utc

TOKEN_TYPES = ("CTR", "ACD", "VST")


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_dumps(obj: Dict[str, Any]) -> str:
    # Deterministic JSON string: sorted keys, no whitespace
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def sha256_bytes_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def hash_chain(prev_hash: str, payload: Dict[str, Any]) -> str:
    return sha256_hex(prev_hash + canonical_dumps(payload))


# ─────────────────────────────────────────────
# CONTRACT TOKENS
# ─────────────────────────────────────────────

def generate_contract_token(year: int, token_type: str = "CTR", prefix: str = "MR3X") -> str:
    """
    <PREFIX>-<TYPE>-<YYYY>-<5 digits>-<5 digits>, e.g. MR3X-CTR-2025-01234-12345.
    """
    if token_type not in TOKEN_TYPES:
        raise ValueError(f"Unknown token type {token_type}.")
    first = f"{secrets.randbelow(100000):05d}"
    second = f"{secrets.randbelow(100000):05d}"
    return f"{prefix}-{token_type}-{year:04d}-{first}-{second}"


def is_valid_contract_token(token: str, token_type: str = "CTR", prefix: str = "MR3X") -> bool:
    pattern = rf"^{re.escape(prefix)}-{re.escape(token_type)}-\d{{4}}-\d{{5}}-\d{{5}}$"
    return re.match(pattern, token or "") is not None


# ─────────────────────────────────────────────
# CONTRACT CONTENT HASH
# ─────────────────────────────────────────────

def generate_contract_hash(data: Dict[str, Any], ip: str, generated_at: datetime) -> str:
    """
    SHA-256 over canonical(data) + signer ip + generation timestamp.

    This is a record-of-generation marker: it is reproducible only together
    with the persisted ip and timestamp, not from the document alone.
    """
    return sha256_hex(canonical_dumps(data) + (ip or "") + as_utc(generated_at).isoformat())


def verify_contract_hash(data: Dict[str, Any], ip: str, generated_at: datetime, expected: str) -> bool:
    return secrets.compare_digest(generate_contract_hash(data, ip, generated_at), expected or "")
