from __future__ import annotations

import hmac
from typing import Optional

from starlette.datastructures import Headers

TELEGRAM_SECRET_HEADER = "x-telegram-bot-api-secret-token"


class SignatureVerificationError(Exception):
    pass


def _header_value(headers: Headers, candidates: list[str]) -> Optional[str]:
    for key in candidates:
        value = headers.get(key)
        if value:
            return value.strip()
    return None


def verify_telegram_secret(headers: Headers, secret: str) -> None:
    if not secret:
        return
    provided = _header_value(headers, [TELEGRAM_SECRET_HEADER])
    if not provided:
        raise SignatureVerificationError("missing telegram secret token header")
    if not hmac.compare_digest(secret.encode("utf-8"), provided.encode("utf-8")):
        raise SignatureVerificationError("invalid telegram secret token")
