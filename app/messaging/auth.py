"""
RELAY Chat - Credential helpers

Used by the register / login / profile update routes only. The chat core
stores whatever string it is handed and never inspects it.
"""
import hashlib
import hmac
import secrets

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 120_000


def hash_password(raw: str, iterations: int = ITERATIONS) -> str:
    """Hash a password as `pbkdf2_sha256$<iterations>$<salt>$<hex digest>`."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", raw.encode(), salt.encode(), iterations).hex()
    return f"{ALGORITHM}${iterations}${salt}${digest}"


def is_hashed(value: str) -> bool:
    return isinstance(value, str) and value.startswith(ALGORITHM + "$")


def verify_password(raw: str, stored: str) -> bool:
    """Check `raw` against a stored hash (or a legacy plain value)."""
    if not raw or not stored:
        return False

    if not is_hashed(stored):
        return hmac.compare_digest(raw.encode(), stored.encode())

    try:
        _, iterations, salt, expected = stored.split("$", 3)
        digest = hashlib.pbkdf2_hmac("sha256", raw.encode(), salt.encode(), int(iterations)).hex()
    except ValueError:
        return False
    return hmac.compare_digest(digest, expected)
