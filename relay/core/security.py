import hashlib
import hmac
import secrets


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(payload: str | bytes, secret: str) -> str:
    """Compute the webhook signature for a serialized payload.

    Args:
        payload: The exact serialized request body
        secret: The subscription secret

    Returns:
        Hex encoded HMAC-SHA256 digest
    """
    return hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """Verify a webhook signature against the payload it claims to sign.

    Intended for receiving services validating inbound deliveries. Lengths
    are compared first, then the digests in constant time.

    Args:
        payload: The exact request body as received
        signature: Value of the X-Webhook-Signature header
        secret: The shared subscription secret

    Returns:
        True if the signature matches, False otherwise
    """
    expected = sign_payload(payload, secret)
    if len(signature) != len(expected):
        return False
    return hmac.compare_digest(_to_bytes(signature), expected.encode("ascii"))


def generate_secret(nbytes: int = 32) -> str:
    """Generate a random webhook secret.

    Args:
        nbytes: Number of random bytes to use as input entropy.

    Returns:
        A URL-safe token string.
    """
    return secrets.token_urlsafe(nbytes)
