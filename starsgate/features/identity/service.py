"""
Telegram Mini App identity verification.

Security contract:
- initData is untrusted until its hash matches; no claim is read before that
- HMAC key is derived from the shared secret under the "WebAppData" label
- Comparison uses hmac.compare_digest() (constant-time)
- Every failure raises AuthInvalidError with the same public message;
  the reason is only logged
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Callable, Dict, Optional, Union
from urllib.parse import parse_qsl

from starsgate.core.errors import AuthInvalidError


logger = logging.getLogger(__name__)

Identity = str

WEBAPP_DATA_LABEL = "WebAppData"
HASH_FIELD = "hash"
CHECK_SEPARATOR = "\n"


def normalize_identity(value: Union[int, str, None]) -> Optional[Identity]:
    """Return the canonical string form of a Telegram user id, or None."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    digits = text[1:] if text.startswith("-") else text
    if not digits.isascii() or not digits.isdecimal():
        return None
    return str(int(text))


def derive_key(secret: str, label: str) -> bytes:
    """Derive a purpose-bound HMAC key: HMAC-SHA256(key=label, msg=secret)."""
    return hmac.new(label.encode("utf-8"), secret.encode("utf-8"), hashlib.sha256).digest()


def build_check_string(claims: Dict[str, str]) -> str:
    """Canonical form of the claims: sorted key=value lines."""
    return CHECK_SEPARATOR.join(f"{k}={v}" for k, v in sorted(claims.items()))


def sign_claims(secret: str, claims: Dict[str, str]) -> str:
    """Compute the initData hash for a claim set (as Telegram does)."""
    key = derive_key(secret, WEBAPP_DATA_LABEL)
    return hmac.new(key, build_check_string(claims).encode("utf-8"), hashlib.sha256).hexdigest()


class IdentityVerifier:
    """Validate initData envelopes and return the Telegram user id."""

    def __init__(
        self,
        secret: Optional[str],
        *,
        max_age_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret or ""
        self._max_age_seconds = max_age_seconds
        self._clock = clock

    def _reject(self, reason: str) -> AuthInvalidError:
        logger.debug("initData rejected: %s", reason)
        return AuthInvalidError(reason)

    def _canonicalize(self, envelope: str) -> Dict[str, str]:
        raw = (envelope or "").strip()
        if not raw:
            raise self._reject("empty_envelope")
        try:
            pairs = parse_qsl(raw, keep_blank_values=True, strict_parsing=True)
        except ValueError:
            raise self._reject("parse_failed")
        if not pairs:
            raise self._reject("parse_empty")

        claims: Dict[str, str] = {}
        for key, value in pairs:
            if key in claims:
                raise self._reject("duplicate_key")
            claims[key] = value
        return claims

    def verify(self, envelope: str) -> Identity:
        """Verify an initData string and return the identity it was issued for.

        Raises:
            AuthInvalidError: secret unset, envelope malformed, hash absent or
                wrong, envelope expired, or no user id inside.
        """
        if not self._secret:
            raise self._reject("secret_unconfigured")

        claims = self._canonicalize(envelope)
        tag = claims.pop(HASH_FIELD, None)
        if not tag:
            raise self._reject("hash_missing")

        expected = sign_claims(self._secret, claims)
        if not hmac.compare_digest(expected.encode("ascii"), tag.encode("utf-8")):
            raise self._reject("hash_mismatch")

        # Claims are trusted from here on
        if self._max_age_seconds > 0:
            try:
                auth_date = int(claims.get("auth_date", ""))
            except ValueError:
                raise self._reject("auth_date_invalid")
            if self._clock() - auth_date > self._max_age_seconds:
                raise self._reject("expired")

        try:
            user = json.loads(claims.get("user", ""))
        except ValueError:
            raise self._reject("user_json_invalid")
        identity = normalize_identity(user.get("id")) if isinstance(user, dict) else None
        if identity is None:
            raise self._reject("identity_missing")
        return identity
