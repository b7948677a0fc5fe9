"""
Identity minting for deliveries: public tracking codes and proof PINs.

Both are drawn from the OS CSPRNG. Uniqueness of tracking codes is enforced
by the deliveries.tracking_code unique index; callers retry on conflict.
"""

import hmac
import re
import secrets
import string
import uuid

TRACKING_CODE_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_CODE_PATTERN = re.compile(r"^DLV-[A-Z0-9]{5}-[A-Z0-9]{5}$")


def _random_block(length: int = 5) -> str:
    return "".join(secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(length))


def generate_tracking_code() -> str:
    """Return a code of the form DLV-XXXXX-XXXXX."""
    return f"DLV-{_random_block()}-{_random_block()}"


def generate_proof_pin() -> str:
    """Return a 4-digit PIN, zero-padded (0000..9999)."""
    return "%04d" % secrets.randbelow(10000)


def generate_id() -> str:
    return str(uuid.uuid4())


def verify_pin(expected: str, provided: str) -> bool:
    """Constant-time PIN comparison."""
    if not expected or provided is None:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())
