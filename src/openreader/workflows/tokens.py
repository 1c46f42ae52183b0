"""HMAC-signed reader tokens.

Token layout: ``<b64url(json payload)>.<b64url(hmac_sha256(secret, b64 payload))>``
with base64 padding stripped. Tokens are stateless: no revocation list and no
persistence; the ``exp`` claim is the only lifetime control.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

from ..core.keys import K_ARCHIVE_ID, K_DIRECT_URL, K_EXP, K_IAT
from .errors import ConfigError, TokenError
from .identity import is_numeric_only, strip_prefixes
from .records import Reason
from .resolver_config import ARCHIVE_DOWNLOAD_BASE, GUTENBERG_EPUB_TEMPLATE, ResolverConfig

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def derive_direct_url(data: Dict[str, Any]) -> None:
    """Fill ``direct_url`` (and ``archive_id``) for providers with a fixed file layout."""

    provider = str(data.get("provider") or "").lower()
    pid = str(data.get("provider_id") or "")
    if provider == "gutenberg" and is_numeric_only(pid):
        data[K_DIRECT_URL] = GUTENBERG_EPUB_TEMPLATE.format(id=pid)
    elif provider == "archive":
        ident = strip_prefixes(pid)
        if not ident or is_numeric_only(ident):
            return
        quoted = quote(ident, safe="")
        data[K_DIRECT_URL] = f"{ARCHIVE_DOWNLOAD_BASE}/{quoted}/{quoted}.epub"
        if not data.get(K_ARCHIVE_ID):
            data[K_ARCHIVE_ID] = ident


class ReaderTokenSigner:
    """Builds and verifies reader tokens with a single shared secret."""

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ConfigError("reader token secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock

    @classmethod
    def from_config(cls, config: ResolverConfig) -> "ReaderTokenSigner":
        """Resolve the signing secret; dev mode falls back to a per-process random secret."""

        secret = config.signing_secret
        if not secret:
            if config.production:
                raise ConfigError(
                    "No signing secret found. Set APP_SIGNING_SECRET "
                    "(or READER_TOKEN_SECRET / JWT_SECRET / SESSION_SECRET)."
                )
            logger.warning(
                "No signing secret configured; using a random per-process secret. "
                "Tokens will not survive a restart."
            )
            secret = secrets.token_urlsafe(32)
        else:
            logger.info("Signing secret resolved (length=%d)", len(secret))
        return cls(secret, ttl_seconds=config.token_ttl_seconds)

    def _sign(self, encoded: str) -> str:
        digest = hmac.new(self._secret, encoded.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def build(self, payload: Mapping[str, Any]) -> str:
        data: Dict[str, Any] = dict(payload)
        # ISBNs and other numeric ids never stand in for an archive.org identifier
        if is_numeric_only(str(data.get(K_ARCHIVE_ID) or "").strip()):
            data.pop(K_ARCHIVE_ID)
        if not _present(data.get(K_DIRECT_URL)) and not _present(data.get(K_ARCHIVE_ID)):
            derive_direct_url(data)
            if not _present(data.get(K_DIRECT_URL)) and not _present(data.get(K_ARCHIVE_ID)):
                raise TokenError(
                    f"direct_url is required (provider={data.get('provider')}, id={data.get('provider_id')})"
                )
        now = int(self._clock())
        data.setdefault(K_IAT, now)
        if not data.get(K_EXP):
            data[K_EXP] = now + self.ttl_seconds
        encoded = _b64encode(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
        return f"{encoded}.{self._sign(encoded)}"

    def verify_detailed(self, token: Optional[str]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """Return ``(payload, None)`` or ``(None, reason)``."""

        if not token or not isinstance(token, str):
            return None, Reason.INVALID_TOKEN
        token = token.strip()
        encoded, sep, signature = token.partition(".")
        if not sep or not encoded or not signature or not signature.isascii():
            return None, Reason.INVALID_TOKEN
        try:
            expected = self._sign(encoded)
        except UnicodeEncodeError:
            return None, Reason.INVALID_TOKEN
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii")):
            logger.debug("token verify failed: invalid signature")
            return None, Reason.INVALID_TOKEN
        try:
            payload = json.loads(_b64decode(encoded).decode("utf-8"))
        except (ValueError, UnicodeError):
            return None, Reason.INVALID_TOKEN
        if not isinstance(payload, dict):
            return None, Reason.INVALID_TOKEN
        exp = payload.get(K_EXP)
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return None, Reason.INVALID_TOKEN
        if exp < self._clock():
            return None, Reason.TOKEN_EXPIRED
        return payload, None

    def verify(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        payload, _ = self.verify_detailed(token)
        return payload


__all__ = ["ReaderTokenSigner", "derive_direct_url", "DEFAULT_TTL_SECONDS"]
