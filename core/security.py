# core/security.py
"""Webhook signature verification and credential validation."""
import hashlib
import hmac
import re
from typing import Optional, List, Tuple

from loguru import logger

SIGNATURE_SCHEME = "sha256="

# Known test/weak credentials that should never be used in production
FORBIDDEN_CREDENTIALS = {
    "test-key",
    "test-api-key",
    "test-webhook-secret",
    "dev-api-key",
    "your-secret-api-key-here",
    "your-webhook-secret",
    "secret",
    "password",
    "admin",
    "123456",
}


def compute_signature(payload: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_SCHEME}{digest}"


def verify_signature(
    payload: bytes, provided_signature: Optional[str], secret: Optional[str]
) -> bool:
    """Check a ``sha256=<hex>`` signature header against ``payload``.

    Never raises: a missing secret, a missing or malformed header and any
    encoding problem all count as a failed verification.
    """
    if not secret or not provided_signature:
        return False
    try:
        expected = compute_signature(payload, secret).encode("ascii")
        provided = provided_signature.strip().encode("ascii")
    except (UnicodeError, TypeError, AttributeError) as e:
        logger.warning(f"Could not verify webhook signature: {e}")
        return False
    return hmac.compare_digest(expected, provided)


def validate_credential_strength(
    credential: str, min_length: int = 32
) -> Tuple[bool, List[str]]:
    """
    Validate credential meets minimum security requirements.

    Args:
        credential: The credential to validate
        min_length: Minimum required length (default 32 for API keys)

    Returns:
        Tuple of (is_valid, list_of_issues)
    """
    issues = []

    if not credential:
        issues.append("Credential is empty")
        return False, issues

    if len(credential) < min_length:
        issues.append(f"Credential too short (minimum {min_length} characters)")

    if credential.lower() in FORBIDDEN_CREDENTIALS:
        issues.append("Using forbidden test/weak credential")

    if re.match(r'^[a-z]+$', credential.lower()):
        issues.append(
            "Credential contains only letters (should include numbers/symbols)"
        )

    unique_chars = len(set(credential))
    if unique_chars < 10:
        issues.append("Credential has low entropy (too few unique characters)")

    return len(issues) == 0, issues


def validate_production_secrets(
    api_key: Optional[str], webhook_secret: Optional[str]
) -> Tuple[bool, List[str]]:
    """
    Validate the configured API key and webhook secret.

    Returns:
        Tuple of (all_valid, list_of_all_issues)
    """
    all_issues = []

    if api_key:
        is_valid, issues = validate_credential_strength(api_key, min_length=32)
        if not is_valid:
            all_issues.extend([f"API_KEY: {issue}" for issue in issues])
    else:
        all_issues.append("API_KEY is not set")

    if webhook_secret:
        is_valid, issues = validate_credential_strength(webhook_secret, min_length=32)
        if not is_valid:
            all_issues.extend([f"GITHUB_WEBHOOK_SECRET: {issue}" for issue in issues])
    else:
        all_issues.append(
            "GITHUB_WEBHOOK_SECRET is not set (webhook endpoint will reject all payloads)"
        )

    return len(all_issues) == 0, all_issues


def check_secrets_on_startup(
    api_key: Optional[str], webhook_secret: Optional[str], strict: bool = False
) -> None:
    """
    Check secrets on application startup and log warnings/errors.

    Args:
        strict: If True, raise exception on validation failure

    Raises:
        ValueError: If strict=True and validation fails
    """
    is_valid, issues = validate_production_secrets(api_key, webhook_secret)
    if is_valid:
        return

    logger.error("=" * 80)
    logger.error("SECURITY VALIDATION FAILED - WEAK OR MISSING CREDENTIALS DETECTED")
    logger.error("=" * 80)
    for issue in issues:
        logger.error(f"  - {issue}")
    logger.error("To fix:")
    logger.error("  1. Generate strong secrets:")
    logger.error(
        "     python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    logger.error("  2. Update your .env file with the new secrets")
    logger.error("=" * 80)

    if strict:
        raise ValueError(
            f"Security validation failed: {len(issues)} issue(s) found. "
            "Fix secrets before deploying to production."
        )
