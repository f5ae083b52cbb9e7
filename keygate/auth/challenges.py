"""Challenge store for in-flight WebAuthn ceremonies.

A challenge is short-lived, process-wide cache state: losing every pending
challenge (for example on restart) only forces clients to begin their
ceremony again. Challenges are never written to the database.

Invariants:
- At most one challenge per ceremony key; issuing again overwrites.
- ``consume`` removes the entry atomically, so for any key exactly one
  caller can ever observe it, whether or not its verification later
  succeeds.
- An entry older than ``CHALLENGE_TTL`` is never returned, even if it has
  not been swept yet.

Multi-instance deployments need a shared store: subclass
:class:`ChallengeStore` over a TTL-capable key-value service and implement
``consume`` as a single atomic get-and-delete.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from keygate.clock import Clock, utcnow
from keygate.exceptions import CeremonyType

logger = logging.getLogger(__name__)

CHALLENGE_TTL = timedelta(minutes=5)
CHALLENGE_BYTES = 32


def new_ceremony_key() -> str:
    """Opaque, unguessable identifier for one ceremony."""
    return secrets.token_urlsafe(24)


@dataclass(frozen=True)
class Challenge:
    """One pending ceremony."""

    value: bytes
    ceremony: CeremonyType
    issued_at: datetime
    user_id: int | None = None
    username: str | None = None
    user_handle: bytes | None = None

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + CHALLENGE_TTL

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class ChallengeStore(ABC):
    """Interface for challenge storage."""

    @abstractmethod
    def issue(
        self,
        key: str,
        ceremony: CeremonyType,
        *,
        user_id: int | None = None,
        username: str | None = None,
        user_handle: bytes | None = None,
    ) -> bytes:
        """Generate and record a fresh challenge for ``key``.

        Returns:
            The random challenge bytes to embed in the ceremony options
        """

    @abstractmethod
    def consume(self, key: str) -> Challenge | None:
        """Atomically fetch and delete the challenge for ``key``.

        Returns:
            The challenge, or None when absent or expired
        """

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""


class InMemoryChallengeStore(ChallengeStore):
    """Single-process challenge store (dict guarded by a lock)."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._challenges: dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def issue(
        self,
        key: str,
        ceremony: CeremonyType,
        *,
        user_id: int | None = None,
        username: str | None = None,
        user_handle: bytes | None = None,
    ) -> bytes:
        value = secrets.token_bytes(CHALLENGE_BYTES)
        challenge = Challenge(
            value=value,
            ceremony=ceremony,
            issued_at=self._clock(),
            user_id=user_id,
            username=username,
            user_handle=user_handle,
        )
        with self._lock:
            self._purge_locked(challenge.issued_at)
            self._challenges[key] = challenge
        return value

    def consume(self, key: str) -> Challenge | None:
        with self._lock:
            challenge = self._challenges.pop(key, None)
        if challenge is None:
            return None
        if challenge.is_expired(self._clock()):
            logger.debug("Discarding expired %s challenge", challenge.ceremony.value)
            return None
        return challenge

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def _purge_locked(self, now: datetime) -> int:
        expired = [k for k, c in self._challenges.items() if c.is_expired(now)]
        for k in expired:
            del self._challenges[k]
        return len(expired)
