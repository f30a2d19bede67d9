"""At-rest encryption for the Focus NFe API token kept on `FiscalConfig.api_token`.

The token is written by the config endpoint and read back by the adapter
factory and the connection test; nothing else ever sees it in clear text.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings


class TokenCryptoError(RuntimeError):
    """The stored gateway token cannot be read with the current key.

    Callers turn this into "register the token again" for the user: the
    adapter factory reports the gateway as not configured, and the connection
    test answers as if no token had been stored.
    """


_fernets: dict[bytes, Fernet] = {}


def _get_fernet_key() -> bytes:
    configured = (getattr(settings, "FISCAL_TOKEN_ENCRYPTION_KEY", "") or "").strip()
    if configured:
        return configured.encode("utf-8")

    # Local/dev fallback. Rotating SECRET_KEY makes stored tokens undecryptable.
    digest = hashlib.sha256(settings.SECRET_KEY.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _get_fernet() -> Fernet:
    # One instance per key, so override_settings in tests swaps keys cleanly.
    key = _get_fernet_key()
    fernet = _fernets.get(key)
    if fernet is None:
        try:
            fernet = Fernet(key)
        except ValueError as exc:
            raise TokenCryptoError("FISCAL_TOKEN_ENCRYPTION_KEY is not a valid Fernet key.") from exc
        _fernets[key] = fernet
    return fernet


def encrypt_token(token: str) -> str:
    """Encrypt a Focus NFe token for storage. An empty token stays empty."""

    if not token:
        return ""
    value = _get_fernet().encrypt(token.encode("utf-8"))
    return value.decode("utf-8")


def decrypt_token(encrypted_token: str) -> str:
    """Return the clear Focus NFe token, or "" when none was stored.

    Raises:
        TokenCryptoError: the value was encrypted with another key, or the
            configured key itself is malformed.
    """

    if not encrypted_token:
        return ""
    try:
        value = _get_fernet().decrypt(encrypted_token.encode("utf-8"))
        return value.decode("utf-8")
    except InvalidToken as exc:
        raise TokenCryptoError("Invalid encrypted token.") from exc
