"""
Inbound request signature checks for Slack and Discord.

Both checks are skipped when the corresponding secret is not configured.
"""
import hashlib
import hmac
import logging
import time
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from backend import config

logger = logging.getLogger(__name__)

SLACK_REPLAY_WINDOW_SECONDS = 300


def verify_slack_signature(
    raw_body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    signing_secret: Optional[str] = None,
    now: Optional[float] = None
) -> bool:
    """
    Slack signs requests with v0=HMAC_SHA256(secret, "v0:{timestamp}:{body}").
    Requests older than five minutes are rejected.
    """
    secret = config.SLACK_SIGNING_SECRET if signing_secret is None else signing_secret
    if not secret:
        return True
    if not timestamp or not signature:
        return False

    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    if abs((now or time.time()) - ts) > SLACK_REPLAY_WINDOW_SECONDS:
        logger.warning("[Verification] Slack request outside replay window")
        return False

    basestring = f"v0:{timestamp}:{raw_body.decode('utf-8', errors='replace')}"
    computed = "v0=" + hmac.new(secret.encode("utf-8"), basestring.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature)


def verify_discord_signature(
    raw_body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    public_key: Optional[str] = None
) -> bool:
    """Ed25519 signature over timestamp + body, hex-encoded key and signature."""
    key = config.DISCORD_PUBLIC_KEY if public_key is None else public_key
    if not key:
        return True
    if not timestamp or not signature:
        return False

    try:
        verifier = Ed25519PublicKey.from_public_bytes(bytes.fromhex(key))
        verifier.verify(bytes.fromhex(signature), timestamp.encode("utf-8") + raw_body)
        return True
    except (InvalidSignature, ValueError) as e:
        logger.warning(f"[Verification] Discord signature rejected: {e}")
        return False
