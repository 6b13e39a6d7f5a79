"""Worker identity checks.

Workers self-register: the first request carrying an unknown user name
creates that user with the supplied credential. Later requests must present
the same credential.
"""

import hashlib
import hmac
import secrets
from typing import Optional

from .store import RedisStore, User
from ..errors import AuthFailure

PBKDF2_ITERATIONS = 50_000


def hash_credential(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Salted PBKDF2-SHA256 digest of a credential, hex encoded."""
    digest = hashlib.pbkdf2_hmac('sha256', password.encode(), salt.encode(), iterations)
    return digest.hex()


class Authenticator:
    """Get-or-create users and verify their credentials."""

    def __init__(self, store: RedisStore, iterations: int = PBKDF2_ITERATIONS):
        self.store = store
        self.iterations = iterations

    def authenticate(self, username: Optional[str], password: Optional[str], version: Optional[int] = None) -> User:
        """Return the user for username, creating it on first contact.

        Args:
            username: Identifying name of the worker.
            password: Credential presented by the worker.
            version: Protocol version reported by the worker.

        Returns:
            The (possibly new) User row, with its last-seen version updated.

        Raises:
            AuthFailure: Missing name, empty credential, or credential mismatch.
        """
        if not username:
            raise AuthFailure("No user given")
        if not password:
            raise AuthFailure(f"Empty password for user {username}")

        user = self.store.get_user_by_name(username)
        created = False
        if user is None:
            salt = secrets.token_hex(16)
            # Another request may register the same name first; then verify against it
            user, created = self.store.upsert_user(
                username,
                hash_credential(password, salt, self.iterations),
                salt,
            )
        if not created:
            expected = hash_credential(password, user.salt, self.iterations)
            if not hmac.compare_digest(expected, user.password_hash):
                raise AuthFailure(f"Invalid password for user {username}")

        return self.store.touch_user(user.id, version or 0)
