"""
Password digests.

bcrypt is deliberately slow, so hashing and checking run in a worker
thread to keep the event loop responsive.
"""

import asyncio
from typing import Optional

import bcrypt

from expense_tracker.config import PasswordSettings, get_settings


# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted, cost-tunable password hashing."""

    def __init__(self, settings: Optional[PasswordSettings] = None):
        self._settings = settings or get_settings().password

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self._hash_sync, password)

    async def verify(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self._verify_sync, password, password_hash)

    def _hash_sync(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._settings.hash_rounds)
        return bcrypt.hashpw(_encode(password), salt).decode("utf-8")

    @staticmethod
    def _verify_sync(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
        except ValueError:
            # Stored digest is not a bcrypt hash
            return False
