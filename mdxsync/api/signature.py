"""HMAC-SHA256 verification of GitHub webhook deliveries."""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = 'sha256='


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
    return f'{SIGNATURE_PREFIX}{digest}'


def verify_signature(body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Check an ``X-Hub-Signature-256`` header against the raw request body.
    A missing or malformed header fails verification.
    """
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode('utf-8'), signature_header.strip().encode('utf-8'))
