"""Unit tests for the in-memory credential store."""

import asyncio
import threading

import pytest

from keygate.auth.credentials import InMemoryCredentialStore
from keygate.auth.records import NewCredential
from keygate.exceptions import (
    CounterRegressionError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    UsernameTakenError,
    ValidationError,
)
from keygate.storage.entities import MAX_SIGN_COUNT


def _credential(cid: bytes = b"cred-1", sign_count: int = 0) -> NewCredential:
    return NewCredential(
        credential_id=cid,
        public_key=b"cose-key",
        sign_count=sign_count,
        transports=("internal",),
    )


@pytest.fixture
def store(clock):
    return InMemoryCredentialStore(clock=clock)


@pytest.mark.asyncio
class TestCreateAccount:
    async def test_creates_user_and_credential(self, store, clock):
        user, credential = await store.create_account("alice", b"handle-a", _credential())

        assert user.username == "alice"
        assert user.created_at == clock()
        assert credential.user_id == user.id
        assert credential.sign_count == 0
        assert credential.transports == ("internal",)
        assert await store.get_user(user.id) == user
        assert await store.get_user_by_username("alice") == user
        assert await store.username_exists("alice")

    async def test_username_is_case_sensitive(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))

        assert not await store.username_exists("Alice")
        await store.create_account("Alice", b"h2", _credential(b"c2"))

    async def test_duplicate_username(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))

        with pytest.raises(UsernameTakenError):
            await store.create_account("alice", b"h2", _credential(b"c2"))

        # The losing attempt left no credential behind
        assert await store.find_credential_by_id(b"c2") is None

    async def test_duplicate_credential_creates_no_user(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))

        with pytest.raises(DuplicateCredentialError):
            await store.create_account("bob", b"h2", _credential(b"c1"))

        assert await store.get_user_by_username("bob") is None


@pytest.mark.asyncio
class TestRegisterCredential:
    async def test_second_credential_for_user(self, store):
        user, first = await store.create_account("alice", b"h1", _credential(b"c1"))

        second = await store.register_credential(user.id, _credential(b"c2"))

        listed = await store.list_credentials_for_user(user.id)
        assert [c.credential_id for c in listed] == [b"c1", b"c2"]
        assert second.id > first.id

    async def test_credential_id_is_globally_unique(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))
        bob, _ = await store.create_account("bob", b"h2", _credential(b"c2"))

        with pytest.raises(DuplicateCredentialError):
            await store.register_credential(bob.id, _credential(b"c1"))

    async def test_unknown_user(self, store):
        with pytest.raises(ValidationError):
            await store.register_credential(999, _credential())

    async def test_counter_out_of_range(self, store):
        user, _ = await store.create_account("alice", b"h1", _credential(b"c1"))

        with pytest.raises(ValidationError):
            await store.register_credential(user.id, _credential(b"c2", sign_count=MAX_SIGN_COUNT + 1))

    async def test_list_for_user_without_credentials(self, store):
        assert await store.list_credentials_for_user(42) == []


@pytest.mark.asyncio
class TestUpdateCounter:
    async def test_counter_moves_forward(self, store, clock):
        await store.create_account("alice", b"h1", _credential(b"c1"))
        clock.advance(minutes=1)

        updated = await store.update_counter(b"c1", 5)

        assert updated.sign_count == 5
        assert updated.last_used_at == clock()
        assert (await store.find_credential_by_id(b"c1")).sign_count == 5

    @pytest.mark.parametrize("presented", [3, 5])
    async def test_regression_rejected_and_state_unchanged(self, store, presented):
        await store.create_account("alice", b"h1", _credential(b"c1", sign_count=5))

        with pytest.raises(CounterRegressionError) as exc_info:
            await store.update_counter(b"c1", presented)

        assert exc_info.value.stored_counter == 5
        assert exc_info.value.presented_counter == presented
        assert (await store.find_credential_by_id(b"c1")).sign_count == 5

    async def test_unknown_credential(self, store):
        with pytest.raises(CredentialNotFoundError):
            await store.update_counter(b"missing", 1)

    async def test_counter_above_32_bits(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))

        with pytest.raises(ValidationError):
            await store.update_counter(b"c1", MAX_SIGN_COUNT + 1)

    async def test_max_counter_accepted(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))

        assert (await store.update_counter(b"c1", MAX_SIGN_COUNT)).sign_count == MAX_SIGN_COUNT

    async def test_concurrent_updates_with_same_value(self, store):
        """Two logins presenting the same counter: exactly one may win."""
        await store.create_account("alice", b"h1", _credential(b"c1"))
        barrier = threading.Barrier(2)
        outcomes: list[str] = []

        def attempt():
            barrier.wait()
            try:
                asyncio.run(store.update_counter(b"c1", 7))
                outcomes.append("ok")
            except CounterRegressionError:
                outcomes.append("regression")

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "regression"]
        assert (await store.find_credential_by_id(b"c1")).sign_count == 7

    async def test_counter_never_decreases_under_contention(self, store):
        await store.create_account("alice", b"h1", _credential(b"c1"))
        values = list(range(1, 41))
        barrier = threading.Barrier(len(values))
        accepted: list[int] = []
        lock = threading.Lock()

        def attempt(value: int):
            barrier.wait()
            try:
                asyncio.run(store.update_counter(b"c1", value))
            except CounterRegressionError:
                return
            with lock:
                accepted.append(value)

        threads = [threading.Thread(target=attempt, args=(v,)) for v in values]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # The largest value can never lose, so the final state is 40
        assert 40 in accepted
        assert (await store.find_credential_by_id(b"c1")).sign_count == 40


@pytest.mark.asyncio
class TestMarkUsed:
    async def test_mark_used_keeps_counter(self, store, clock):
        await store.create_account("alice", b"h1", _credential(b"c1"))
        clock.advance(hours=1)

        await store.mark_used(b"c1")

        stored = await store.find_credential_by_id(b"c1")
        assert stored.sign_count == 0
        assert stored.last_used_at == clock()

    async def test_mark_used_unknown(self, store):
        with pytest.raises(CredentialNotFoundError):
            await store.mark_used(b"missing")
