"""Signed owner tokens carried in the ``user`` cookie.

A token is ``<raw id>.<hex HMAC-SHA256 of the raw id>``. The storage layer
treats the whole token as an opaque owner key and never decodes it; only the
HTTP layer verifies signatures, issuing a fresh token when the cookie is
missing or forged.
"""

import hashlib
import hmac
import uuid

from shortener.exceptions import InvalidTokenError

__all__ = ["Secretary"]


class Secretary:
    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("secret_key must be non-empty")
        self._key = secret_key.encode("utf-8")

    def _sign(self, raw_id: str) -> str:
        return hmac.new(self._key, raw_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def encode(self, raw_id: str) -> str:
        if not raw_id or "." in raw_id:
            raise ValueError(f"raw id must be non-empty and dot-free, got {raw_id!r}")
        return f"{raw_id}.{self._sign(raw_id)}"

    def decode(self, token: str) -> str:
        raw_id, sep, signature = token.rpartition(".")
        if not sep or not raw_id:
            raise InvalidTokenError("token is not signed")
        if not hmac.compare_digest(signature, self._sign(raw_id)):
            raise InvalidTokenError("token signature mismatch")
        return raw_id

    def new_token(self) -> str:
        return self.encode(str(uuid.uuid4()))
