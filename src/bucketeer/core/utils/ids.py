"""Random identifier tokens for remote buckets, objects and outbox records."""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits


def random_token(length: int, alphabet: str = _ALPHABET) -> str:
    """Return a cryptographically random token of *length* characters."""
    if length <= 0:
        raise ValueError("Token length must be positive")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def bucket_identifier(prefix: str, length: int = 8) -> str:
    """Globally-unique remote bucket key: ``<prefix><lowercase token>``.

    Remote bucket names only allow lowercase characters.
    """
    return f"{prefix}{random_token(length).lower()}"


def object_identifier(length: int = 16) -> str:
    return random_token(length)
