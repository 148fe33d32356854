"""Secret and wallet-reference scrubbing for log output.

Strings go through a size gate before any regex work:
 1. longer than MAX_STR_LOG: replaced by length + sha256 prefix
 2. longer than MAX_STR_FOR_REGEX: only the auth-header prefix check
 3. otherwise: every pattern below is applied

Custodial wallet refs are what lets the settlement rail debit a tenant, so
they are scrubbed both as dict keys and where they leak into free text
(Circle error messages, transfer payload fragments). On-chain addresses
and transfer refs are public and stay readable.
"""

import hashlib
import re
import traceback
from typing import Any

MAX_STR_LOG: int = 2048
MAX_STR_FOR_REGEX: int = 512
MAX_DEPTH: int = 6

REDACTED = "[REDACTED]"

# Compared lower-cased
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization", "token", "access_token", "api_key", "secret",
    "signature", "email", "phone", "private_key", "mnemonic",
    "entity_secret", "entity_secret_ciphertext", "entitysecretciphertext",
    "custodial_wallet_ref", "source_wallet_ref", "walletid", "sourcewalletid",
})

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

# (pattern, replacement); the label is kept so redacted lines stay greppable
_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer \S+"), REDACTED),
    (re.compile(r"Basic \S+"), REDACTED),
    (re.compile(r"(?:TEST|LIVE)_API_KEY:\S+"), REDACTED),
    (re.compile(r"\b(api_key|access_token)=\S+"), rf"\1={REDACTED}"),
    # "walletId": "…", source_wallet_ref=…, entitySecretCiphertext: …
    (
        re.compile(
            r"""\b(walletId|sourceWalletId|source_wallet_ref|custodial_wallet_ref|entitySecretCiphertext)"""
            r"""(["']?\s*[:=]\s*["']?)[\w+/=-]+"""
        ),
        rf"\1\2{REDACTED}",
    ),
    # "source wallet 5f0c…-… not found", "wallet id: 5f0c…"
    (re.compile(rf"(?i)\b(wallet(?:\s+id)?[\s:#=]+){_UUID}"), rf"\1{REDACTED}"),
]

_AUTH_PREFIXES = ("Bearer ", "Basic ")


def sanitize_str(s: str) -> str:
    """Scrub a string value according to the size gate."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    n = len(s)

    if n > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={n} sha256={digest}]"

    if n > MAX_STR_FOR_REGEX:
        if s.startswith(_AUTH_PREFIXES):
            return REDACTED
        return s

    for pattern, replacement in _PATTERNS:
        s = pattern.sub(replacement, s)
    return s


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Recursively scrub a log extra value.

    Sensitive dict keys are replaced wholesale; strings go through
    sanitize_str(); anything else passes through.
    """
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        return {
            key: REDACTED
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS
            else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    if isinstance(obj, str):
        return sanitize_str(obj)

    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Render an exc_info tuple as a scrubbed traceback.

    Locals are not captured, so wallet refs held in frames never reach the log.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    try:
        te = traceback.TracebackException.from_exception(value, capture_locals=False)
        return sanitize_str("".join(te.format()))
    except Exception:
        return "[TRACEBACK_FORMAT_ERROR]"
