"""Secret sealing for the GitHub secrets API.

GitHub only accepts secret values encrypted with a libsodium sealed box
against the environment's public key. Nothing else is encrypted locally.
"""

from __future__ import annotations

from nacl import encoding, public
from nacl.exceptions import CryptoError

from envsync.errors import RemoteError


def seal_secret(public_key: str, value: str) -> str:
    """Encrypt ``value`` for GitHub and return it base64-encoded.

    Args:
        public_key: Base64 public key returned by the ``secrets/public-key`` endpoint.
        value: Plain-text secret value.
    """
    try:
        key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder)
    except (CryptoError, ValueError, TypeError) as e:
        raise RemoteError(f"GitHub returned an unusable public key: {e}", retryable=False) from e
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return encoding.Base64Encoder.encode(sealed).decode("utf-8")
