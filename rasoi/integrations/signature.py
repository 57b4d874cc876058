import hashlib
import hmac
from typing import Mapping


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of the exact bytes received."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def extract_signature(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = headers.get(name)
        if value:
            return value.strip()
    return None


def verify_signature(secret: str | None, raw_body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    if signature.lower().startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("ascii", "replace"))
