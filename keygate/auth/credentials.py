"""Credential store: users and their registered WebAuthn credentials.

This is the system of record for the authentication core. Two rules are
enforced here rather than by callers:

- A credential ID is globally unique (across all users).
- ``update_counter`` only ever moves a counter strictly forward; any other
  value raises :class:`CounterRegressionError` and leaves state untouched.
  Concurrent updates for one credential are serialized (a per-credential
  lock in memory, a conditional UPDATE in SQL).
"""

import dataclasses
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import keygate.storage as _storage_mod
from keygate.auth.records import CredentialRecord, NewCredential, UserRecord
from keygate.clock import Clock, utcnow
from keygate.dal import CredentialRepository, UserRepository
from keygate.exceptions import (
    CounterRegressionError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    StorageError,
    UsernameTakenError,
    ValidationError,
)
from keygate.storage.entities import MAX_SIGN_COUNT, User, WebAuthnCredential

logger = logging.getLogger(__name__)


def _check_counter_range(value: int) -> None:
    if not 0 <= value <= MAX_SIGN_COUNT:
        raise ValidationError(f"Signature counter {value} outside 32-bit unsigned range")


class CredentialStore(ABC):
    """Interface for user and credential persistence."""

    @abstractmethod
    async def get_user(self, user_id: int) -> UserRecord | None: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> UserRecord | None: ...

    async def username_exists(self, username: str) -> bool:
        return await self.get_user_by_username(username) is not None

    @abstractmethod
    async def create_account(
        self,
        username: str,
        user_handle: bytes,
        credential: NewCredential,
    ) -> tuple[UserRecord, CredentialRecord]:
        """Create a user and its first credential, all or nothing.

        Raises:
            UsernameTakenError: username already exists
            DuplicateCredentialError: credential ID already registered
        """

    @abstractmethod
    async def register_credential(self, user_id: int, credential: NewCredential) -> CredentialRecord:
        """Attach another credential to an existing user.

        Raises:
            DuplicateCredentialError: credential ID already registered
        """

    @abstractmethod
    async def find_credential_by_id(self, credential_id: bytes) -> CredentialRecord | None: ...

    @abstractmethod
    async def list_credentials_for_user(self, user_id: int) -> list[CredentialRecord]: ...

    @abstractmethod
    async def update_counter(self, credential_id: bytes, new_counter: int) -> CredentialRecord:
        """Persist a strictly larger signature counter.

        Raises:
            CounterRegressionError: new_counter <= stored counter
            CredentialNotFoundError: unknown credential
        """

    @abstractmethod
    async def mark_used(self, credential_id: bytes) -> None:
        """Record a successful use without touching the counter."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local store for development and tests."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._users: dict[int, UserRecord] = {}
        self._user_ids_by_name: dict[str, int] = {}
        self._credentials: dict[bytes, CredentialRecord] = {}
        self._counter_locks: dict[bytes, threading.Lock] = {}
        self._user_seq = itertools.count(1)
        self._credential_seq = itertools.count(1)

    async def get_user(self, user_id: int) -> UserRecord | None:
        with self._lock:
            return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> UserRecord | None:
        with self._lock:
            user_id = self._user_ids_by_name.get(username)
            return self._users.get(user_id) if user_id is not None else None

    async def create_account(
        self,
        username: str,
        user_handle: bytes,
        credential: NewCredential,
    ) -> tuple[UserRecord, CredentialRecord]:
        _check_counter_range(credential.sign_count)
        now = self._clock()
        with self._lock:
            if username in self._user_ids_by_name:
                raise UsernameTakenError(f"Username {username!r} already exists")
            if credential.credential_id in self._credentials:
                raise DuplicateCredentialError("Credential is already registered")
            user = UserRecord(
                id=next(self._user_seq),
                username=username,
                user_handle=user_handle,
                created_at=now,
            )
            stored = self._new_record_locked(user.id, credential, now)
            self._users[user.id] = user
            self._user_ids_by_name[username] = user.id
        return user, stored

    async def register_credential(self, user_id: int, credential: NewCredential) -> CredentialRecord:
        _check_counter_range(credential.sign_count)
        with self._lock:
            if user_id not in self._users:
                raise ValidationError(f"Unknown user {user_id}")
            if credential.credential_id in self._credentials:
                raise DuplicateCredentialError("Credential is already registered")
            return self._new_record_locked(user_id, credential, self._clock())

    async def find_credential_by_id(self, credential_id: bytes) -> CredentialRecord | None:
        with self._lock:
            return self._credentials.get(credential_id)

    async def list_credentials_for_user(self, user_id: int) -> list[CredentialRecord]:
        with self._lock:
            owned = [c for c in self._credentials.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.id)

    async def update_counter(self, credential_id: bytes, new_counter: int) -> CredentialRecord:
        _check_counter_range(new_counter)
        with self._counter_lock(credential_id):
            with self._lock:
                current = self._credentials.get(credential_id)
            if current is None:
                raise CredentialNotFoundError("Unknown credential")
            if new_counter <= current.sign_count:
                raise CounterRegressionError(
                    f"Counter {new_counter} does not exceed stored {current.sign_count}",
                    stored_counter=current.sign_count,
                    presented_counter=new_counter,
                )
            updated = dataclasses.replace(
                current, sign_count=new_counter, last_used_at=self._clock()
            )
            with self._lock:
                self._credentials[credential_id] = updated
            return updated

    async def mark_used(self, credential_id: bytes) -> None:
        with self._counter_lock(credential_id), self._lock:
            current = self._credentials.get(credential_id)
            if current is None:
                raise CredentialNotFoundError("Unknown credential")
            self._credentials[credential_id] = dataclasses.replace(
                current, last_used_at=self._clock()
            )

    def _counter_lock(self, credential_id: bytes) -> threading.Lock:
        with self._lock:
            return self._counter_locks.setdefault(credential_id, threading.Lock())

    def _new_record_locked(
        self, user_id: int, credential: NewCredential, now: datetime
    ) -> CredentialRecord:
        record = CredentialRecord(
            id=next(self._credential_seq),
            user_id=user_id,
            credential_id=credential.credential_id,
            public_key=credential.public_key,
            sign_count=credential.sign_count,
            created_at=now,
            transports=tuple(credential.transports),
            device_type=credential.device_type,
            backed_up=credential.backed_up,
        )
        self._credentials[credential.credential_id] = record
        return record


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        username=user.username,
        user_handle=user.user_handle,
        created_at=user.created_at,
    )


def _credential_record(credential: WebAuthnCredential) -> CredentialRecord:
    return CredentialRecord(
        id=credential.id,
        user_id=credential.user_id,
        credential_id=credential.credential_id,
        public_key=credential.public_key,
        sign_count=credential.sign_count,
        created_at=credential.created_at,
        transports=tuple(credential.transports or ()),
        device_type=credential.device_type,
        backed_up=credential.backed_up,
        last_used_at=credential.last_used_at,
    )


def _credential_row(user_id: int, credential: NewCredential) -> dict:
    return {
        "user_id": user_id,
        "credential_id": credential.credential_id,
        "public_key": credential.public_key,
        "sign_count": credential.sign_count,
        "transports": list(credential.transports),
        "device_type": credential.device_type,
        "backed_up": credential.backed_up,
    }


def _conflict_error(exc: IntegrityError) -> Exception:
    """Translate a constraint violation into the domain error."""
    detail = str(exc.orig)
    # FK name also contains "webauthn_credential", so check it first
    if "foreign key" in detail:
        return ValidationError("Unknown user")
    if "credential_id" in detail:
        return DuplicateCredentialError("Credential is already registered")
    if "username" in detail:
        return UsernameTakenError("Username already exists")
    return StorageError("Conflicting write rejected by the database")


class SqlCredentialStore(CredentialStore):
    """PostgreSQL-backed store using the async SQLAlchemy repositories.

    Each public method runs in its own transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        factory = self._session_factory or _storage_mod.get_session_factory()
        try:
            async with factory() as session, session.begin():
                yield session
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            # asyncpg connect errors (refused, timeout) are not wrapped by SQLAlchemy
            logger.error("Credential store failure: %s", exc.__class__.__name__)
            raise StorageError("Credential store unavailable") from exc

    async def get_user(self, user_id: int) -> UserRecord | None:
        async with self._transaction() as session:
            user = await UserRepository(session).get_by_id(user_id)
            return _user_record(user) if user else None

    async def get_user_by_username(self, username: str) -> UserRecord | None:
        async with self._transaction() as session:
            user = await UserRepository(session).get_by_username(username)
            return _user_record(user) if user else None

    async def username_exists(self, username: str) -> bool:
        async with self._transaction() as session:
            return await UserRepository(session).username_exists(username)

    async def create_account(
        self,
        username: str,
        user_handle: bytes,
        credential: NewCredential,
    ) -> tuple[UserRecord, CredentialRecord]:
        _check_counter_range(credential.sign_count)
        try:
            async with self._transaction() as session:
                users = UserRepository(session)
                if await users.username_exists(username):
                    raise UsernameTakenError(f"Username {username!r} already exists")
                user = await users.create({"username": username, "user_handle": user_handle})
                stored = await CredentialRepository(session).create(
                    _credential_row(user.id, credential)
                )
                await session.refresh(user)
                await session.refresh(stored)
                return _user_record(user), _credential_record(stored)
        except IntegrityError as exc:
            raise _conflict_error(exc) from exc

    async def register_credential(self, user_id: int, credential: NewCredential) -> CredentialRecord:
        _check_counter_range(credential.sign_count)
        try:
            async with self._transaction() as session:
                stored = await CredentialRepository(session).create(
                    _credential_row(user_id, credential)
                )
                await session.refresh(stored)
                return _credential_record(stored)
        except IntegrityError as exc:
            raise _conflict_error(exc) from exc

    async def find_credential_by_id(self, credential_id: bytes) -> CredentialRecord | None:
        async with self._transaction() as session:
            stored = await CredentialRepository(session).get_by_credential_id(credential_id)
            return _credential_record(stored) if stored else None

    async def list_credentials_for_user(self, user_id: int) -> list[CredentialRecord]:
        async with self._transaction() as session:
            rows = await CredentialRepository(session).list_for_user(user_id)
            return [_credential_record(row) for row in rows]

    async def update_counter(self, credential_id: bytes, new_counter: int) -> CredentialRecord:
        _check_counter_range(new_counter)
        async with self._transaction() as session:
            repo = CredentialRepository(session)
            advanced = await repo.advance_sign_count(credential_id, new_counter, self._clock())
            stored = await repo.get_by_credential_id(credential_id)
            if stored is None:
                raise CredentialNotFoundError("Unknown credential")
            if not advanced:
                raise CounterRegressionError(
                    f"Counter {new_counter} does not exceed stored {stored.sign_count}",
                    stored_counter=stored.sign_count,
                    presented_counter=new_counter,
                )
            return _credential_record(stored)

    async def mark_used(self, credential_id: bytes) -> None:
        async with self._transaction() as session:
            if not await CredentialRepository(session).touch(credential_id, self._clock()):
                raise CredentialNotFoundError("Unknown credential")
