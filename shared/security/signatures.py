"""Signature helpers for inbound payment-provider notifications.

Every comparison goes through ``secrets.compare_digest`` so a forged
signature cannot be recovered byte by byte from response timings.
"""
import hashlib
import hmac
import secrets


def constant_time_equals(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def hmac_sha256_hex(secret_key: str, message: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sha512_hex(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8")).hexdigest()
