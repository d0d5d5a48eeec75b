import base64
import hashlib
import hmac

from jose import JWTError, jwt

from app.core.config import settings

ALGORITHM = "HS256"
SIGNATURE_HEADER = "Upstash-Signature"


class CronAuthError(ValueError):
    pass


def hash_request_body(body: bytes) -> str:
    digest = hashlib.sha256(body).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def _signing_keys() -> list[str]:
    keys = [settings.cron_current_signing_key, settings.cron_next_signing_key]
    return [key for key in keys if key]


def _decode_with_key(token: str, key: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            key,
            algorithms=[ALGORITHM],
            issuer=settings.cron_signature_issuer,
            options={"verify_aud": False},
        )
    except JWTError:
        return None


def verify_scheduler_signature(signature: str | None, body: bytes, *, url: str | None = None) -> dict:
    """Validate a scheduler-issued signature and return its claims.

    The token must verify against the current or the next signing key (keys are
    rotated by promoting "next" to "current"), carry the configured issuer and
    embed a hash of the exact request body. When ``url`` is given, the token's
    subject must match it.
    """
    if not signature or not signature.strip():
        raise CronAuthError("Missing scheduler signature")

    keys = _signing_keys()
    if not keys:
        raise CronAuthError("Scheduler signing keys are not configured")

    claims = None
    for key in keys:
        claims = _decode_with_key(signature.strip(), key)
        if claims is not None:
            break
    if claims is None:
        raise CronAuthError("Invalid scheduler signature")

    expected_body_hash = hash_request_body(body)
    provided_body_hash = str(claims.get("body") or "").rstrip("=")
    if not hmac.compare_digest(provided_body_hash, expected_body_hash):
        raise CronAuthError("Scheduler signature body hash mismatch")

    if url and claims.get("sub") != url:
        raise CronAuthError("Scheduler signature subject mismatch")

    return claims
