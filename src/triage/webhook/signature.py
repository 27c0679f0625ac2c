"""GitHub webhook signature verification.

GitHub signs every webhook delivery with HMAC-SHA256 keyed by the webhook
secret and sends the result in the ``X-Hub-Signature-256`` header as
``sha256=<hexdigest>``. The comparison is constant-time: both the expected
and received signatures are first reduced to fixed-size SHA-256 digests so
that neither content nor length differences short-circuit the check.
"""

import hashlib
import hmac
from typing import Optional, Union

from src.triage.errors import (
    InvalidSignatureError,
    MissingPayloadError,
    MissingSignatureError,
)

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: Union[str, bytes]) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub would send for a body."""
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    digest = hmac.new(key, raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    signature_header: Optional[str],
    raw_body: Optional[bytes],
    secret: Union[str, bytes],
) -> None:
    """Verify that a webhook body was signed with the shared secret.

    Args:
        signature_header: Value of the ``X-Hub-Signature-256`` header.
        raw_body: The exact bytes of the request body.
        secret: The shared webhook secret.

    Raises:
        MissingPayloadError: If the body is absent or empty.
        MissingSignatureError: If the signature header is absent or empty.
        InvalidSignatureError: If the signature does not match.
    """
    if not raw_body:
        raise MissingPayloadError()

    if not signature_header:
        raise MissingSignatureError()

    expected = compute_signature(raw_body, secret).encode("utf-8")
    received = signature_header.encode("utf-8", errors="surrogateescape")

    # Fixed-size digests keep compare_digest from leaking length mismatches
    if not hmac.compare_digest(
        hashlib.sha256(expected).digest(),
        hashlib.sha256(received).digest(),
    ):
        raise InvalidSignatureError()
