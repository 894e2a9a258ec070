"""
Identity Resolver tests.

Covers resolution precedence (host user, stored token, new token), host
polling with backoff, memoization and create-if-absent provisioning.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import FakeHost, MemoryClientStorage
from superfarm.core.errors import HostIdentityRejected, IdentityUnavailable, PersistenceFailure
from superfarm.db.memory import InMemoryDocumentStore
from superfarm.models.schemas import IdentitySource, PlayerRecord
from superfarm.services.identity_resolver import IdentityResolver, is_anonymous_token

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60
STORED_TOKEN = "6f1c2a4e-8d3b-4b7a-9e55-2c1d0f9a7b31"


class BrokenStore(InMemoryDocumentStore):
    def create_if_absent(self, doc_id, document):
        raise PersistenceFailure("connection refused")


def make_resolver(store, host=None, storage=None, **kwargs):
    kwargs.setdefault("sleep", AsyncMock())
    return IdentityResolver(
        store,
        host or FakeHost(embedded=False),
        storage if storage is not None else MemoryClientStorage(),
        **kwargs
    )


@pytest.mark.unit
class TestResolutionPrecedence:
    """Host user, then stored token, then a new token."""

    @pytest.mark.asyncio
    async def test_host_user_wins_over_stored_token(self, store, host_user):
        storage = MemoryClientStorage({"webUserId": STORED_TOKEN})
        resolver = make_resolver(store, FakeHost([host_user]), storage)

        identity = await resolver.resolve_identity()

        assert identity.player_id == "279058397"
        assert identity.source == IdentitySource.HOST_PLATFORM
        assert storage.writes == []

    @pytest.mark.asyncio
    async def test_stored_token_used_when_not_embedded(self, store):
        storage = MemoryClientStorage({"webUserId": STORED_TOKEN})
        resolver = make_resolver(store, storage=storage)

        identity = await resolver.resolve_identity()

        assert identity.player_id == STORED_TOKEN
        assert identity.source == IdentitySource.ANONYMOUS
        assert identity.generated is False
        assert storage.writes == []

    @pytest.mark.asyncio
    async def test_new_token_written_once(self, store, client_storage):
        resolver = make_resolver(store, storage=client_storage, token_factory=lambda: "fresh-token")

        first = await resolver.resolve_identity()
        second = await resolver.resolve_identity()

        assert first == second
        assert first.player_id == "fresh-token"
        assert first.generated is True
        assert client_storage.writes == [("webUserId", "fresh-token", ONE_YEAR_SECONDS)]

    @pytest.mark.asyncio
    async def test_concurrent_resolution_generates_one_token(self, store, client_storage):
        resolver = make_resolver(store, storage=client_storage)

        results = await asyncio.gather(*(resolver.resolve_identity() for _ in range(5)))

        assert len({identity.player_id for identity in results}) == 1
        assert len(client_storage.writes) == 1

    @pytest.mark.asyncio
    async def test_fresh_sessions_get_distinct_tokens(self, store):
        first = await make_resolver(store).resolve_identity()
        second = await make_resolver(store).resolve_identity()
        assert first.player_id != second.player_id

    @pytest.mark.asyncio
    async def test_host_id_in_cookie_is_not_trusted(self, store, host_user):
        """A cookie holding a host player id cannot address that player."""
        storage = MemoryClientStorage({"webUserId": host_user.id})
        resolver = make_resolver(store, storage=storage, token_factory=lambda: STORED_TOKEN)

        assert await resolver.lookup_identity() is None

        identity = await resolver.resolve_identity()
        assert identity.player_id == STORED_TOKEN
        assert identity.generated is True
        assert storage.values["webUserId"] == STORED_TOKEN

    @pytest.mark.parametrize("token", ["279058397", "not-a-uuid", "6F1C2A4E-8D3B-4B7A-9E55-2C1D0F9A7B31"])
    def test_only_issued_tokens_are_anonymous_ids(self, token):
        assert is_anonymous_token(token) is False
        assert is_anonymous_token(STORED_TOKEN) is True

    @pytest.mark.asyncio
    async def test_lookup_never_generates(self, store, client_storage):
        resolver = make_resolver(store, storage=client_storage)
        assert await resolver.lookup_identity() is None
        assert client_storage.writes == []


@pytest.mark.unit
class TestHostPolling:
    """Polling the host while it makes the user available."""

    @pytest.mark.asyncio
    async def test_user_available_on_third_lookup(self, store, host_user):
        host = FakeHost([None, None, host_user])
        sleep = AsyncMock()
        resolver = make_resolver(store, host, lookup_attempts=5, lookup_delay=0.1, sleep=sleep)

        identity = await resolver.resolve_identity()

        assert identity.player_id == host_user.id
        assert host.lookups == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_user_never_available_falls_back(self, store, client_storage):
        host = FakeHost([])
        resolver = make_resolver(store, host, client_storage, lookup_attempts=3)

        identity = await resolver.resolve_identity()

        assert host.lookups == 3
        assert identity.source == IdentitySource.ANONYMOUS
        assert len(client_storage.writes) == 1

    @pytest.mark.asyncio
    async def test_rejected_host_data_falls_back(self, store):
        host = FakeHost([HostIdentityRejected("invalid signature")])
        storage = MemoryClientStorage({"webUserId": STORED_TOKEN})
        resolver = make_resolver(store, host, storage)

        identity = await resolver.resolve_identity()

        assert identity.player_id == STORED_TOKEN
        assert host.lookups == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, store, host_user):
        host = FakeHost([RuntimeError("bridge not ready"), host_user])
        resolver = make_resolver(store, host)

        identity = await resolver.resolve_identity()

        assert identity.player_id == host_user.id

    @pytest.mark.asyncio
    async def test_persistent_errors_block_entry(self, store, client_storage):
        host = FakeHost([RuntimeError("bridge down")] * 3)
        resolver = make_resolver(store, host, client_storage, lookup_attempts=3)

        with pytest.raises(IdentityUnavailable):
            await resolver.resolve_identity()
        assert client_storage.writes == []


@pytest.mark.unit
class TestProvisioning:
    """Create-if-absent player records."""

    @pytest.mark.asyncio
    async def test_new_player_gets_defaults(self, store):
        resolver = make_resolver(store, token_factory=lambda: "new-player")

        start = await resolver.start_session()

        assert start.created is True
        assert start.record.balances.primary == 10
        assert start.record.crops == []
        assert start.record.has_onboarded is False
        assert store.get("new-player")["identitySource"] == "anonymous"

    @pytest.mark.asyncio
    async def test_same_token_same_record(self, store, client_storage):
        first = await make_resolver(store, storage=client_storage).start_session()
        second = await make_resolver(store, storage=client_storage).start_session()

        assert second.identity.player_id == first.identity.player_id
        assert second.created is False
        assert second.record.balances == first.record.balances

    @pytest.mark.asyncio
    async def test_existing_record_not_overwritten(self, store):
        store.set(STORED_TOKEN, {"identitySource": "anonymous", "balances": {"primary": 50, "secondary": 2}})
        storage = MemoryClientStorage({"webUserId": STORED_TOKEN})

        start = await make_resolver(store, storage=storage).start_session()

        assert start.created is False
        assert start.record.balances.primary == 50
        assert store.get(STORED_TOKEN)["balances"] == {"primary": 50, "secondary": 2}

    @pytest.mark.asyncio
    async def test_host_profile_stored_on_creation(self, store, host_user):
        start = await make_resolver(store, FakeHost([host_user])).start_session()

        assert start.record.identity_source == IdentitySource.HOST_PLATFORM
        assert start.record.display_name == "Vlad Sokolov"
        assert store.get(host_user.id)["locale"] == "ru"

    @pytest.mark.asyncio
    async def test_store_failure_is_identity_unavailable(self):
        resolver = make_resolver(BrokenStore())
        with pytest.raises(IdentityUnavailable):
            await resolver.start_session()


@pytest.mark.unit
class TestLegacyDocuments:
    """Documents written by the earlier web client."""

    def test_legacy_fields_are_reconciled(self):
        record = PlayerRecord.from_document("12345", {
            "silver": "42",
            "gold": 3,
            "hasSelectedCharacter": True,
            "crops": [
                {"slot": 1, "type": "Wheat", "plantedAt": 1000, "stage": 4},
                {"slot": 2},
            ],
            "researchPoints": 7,
        })

        assert record.balances.primary == 42
        assert record.balances.secondary == 3
        assert record.has_onboarded is True
        assert record.identity_source == IdentitySource.HOST_PLATFORM
        assert len(record.crops) == 1
        assert record.crops[0].crop_type == "wheat"
        assert record.crops[0].stage == 0

    def test_negative_balances_are_clamped(self):
        record = PlayerRecord.from_document("anon", {"balances": {"primary": -5, "secondary": 1}})
        assert record.balances.primary == 0
        assert record.identity_source == IdentitySource.ANONYMOUS

    def test_document_round_trip(self, player_record):
        document = player_record.to_document()
        assert PlayerRecord.from_document(player_record.player_id, document) == player_record
