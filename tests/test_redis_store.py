"""Tests for the Redis store, with the Redis client mocked."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import redis

from lendingdesk.core.errors import StorageFault
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.transaction import TransactionRecord, TransactionType
from lendingdesk.domain.user import Role, User
from lendingdesk.infrastructure.memory import MemoryLibraryStore
from lendingdesk.infrastructure.redis import RedisLibraryStore
from lendingdesk.infrastructure import store as store_module
from lendingdesk.infrastructure.store import TransitionOutcome, build_store

CREATED = datetime(2024, 10, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def redis_client():
    """Mock Redis client; each registered script is its own Mock."""
    client = Mock()
    client.register_script.side_effect = lambda source: Mock()
    client.ping.return_value = True
    return client


@pytest.fixture
def redis_store(redis_client):
    return RedisLibraryStore(redis_client, key_prefix="test:")


@pytest.fixture
def record():
    return TransactionRecord(
        id="txn1",
        user_id="user1",
        item_id="item1",
        type=TransactionType.ISSUED,
        timestamp=CREATED,
    )


def item_hash(state="Available"):
    return {
        "id": "item1",
        "name": "Dune",
        "author": "Herbert",
        "page_count": "412",
        "price": "9.99",
        "lending_state": state,
        "created_at": CREATED.isoformat(),
    }


class TestTransition:

    def test_applied(self, redis_store, record):
        flat = [part for pair in item_hash("Issued").items() for part in pair]
        redis_store._transition_script.return_value = [1, flat]

        outcome, item = redis_store.transition("item1", LendingState.AVAILABLE, record)

        assert outcome is TransitionOutcome.APPLIED
        assert item.lending_state == LendingState.ISSUED
        assert item.page_count == 412

        kwargs = redis_store._transition_script.call_args.kwargs
        assert kwargs["keys"] == [
            "test:item:item1",
            "test:txn:txn1",
            "test:txns",
            "test:txns:user:user1",
            "test:txns:item:item1",
            "test:txn:seq",
        ]
        assert kwargs["args"][:2] == ["Available", "Issued"]

    def test_conflict(self, redis_store, record):
        redis_store._transition_script.return_value = [-1]

        assert redis_store.transition("item1", LendingState.AVAILABLE, record) == (TransitionOutcome.CONFLICT, None)

    def test_not_found(self, redis_store, record):
        redis_store._transition_script.return_value = [0]

        assert redis_store.transition("item1", LendingState.AVAILABLE, record) == (TransitionOutcome.NOT_FOUND, None)

    def test_redis_error_is_storage_fault(self, redis_store, record):
        redis_store._transition_script.side_effect = redis.ConnectionError("connection refused")

        with pytest.raises(StorageFault):
            redis_store.transition("item1", LendingState.AVAILABLE, record)


class TestCatalog:

    def test_create_item_writes_hash_and_index(self, redis_store, redis_client):
        pipe = redis_client.pipeline.return_value
        item = Item(**item_hash())

        redis_store.create_item(item)

        pipe.hset.assert_called_once()
        assert pipe.hset.call_args.kwargs["mapping"]["lending_state"] == "Available"
        pipe.zadd.assert_called_once_with("test:items", {"item1": CREATED.timestamp()})
        pipe.execute.assert_called_once()

    def test_list_items(self, redis_store, redis_client):
        redis_client.zrevrange.return_value = ["item1"]
        redis_client.pipeline.return_value.execute.return_value = [item_hash()]

        items = redis_store.list_items()

        assert [item.name for item in items] == ["Dune"]
        redis_client.zrevrange.assert_called_once_with("test:items", 0, -1)

    def test_get_missing_item(self, redis_store, redis_client):
        redis_client.hgetall.return_value = {}

        assert redis_store.get_item("nope") is None

    def test_delete_item(self, redis_store):
        redis_store._delete_item_script.return_value = 3

        assert redis_store.delete_item("item1") == 3
        assert redis_store._delete_item_script.call_args.kwargs["args"] == ["test:", "item1"]

    def test_delete_missing_item(self, redis_store):
        redis_store._delete_item_script.return_value = -1

        assert redis_store.delete_item("item1") is None


class TestIdentityAndLedger:

    def test_create_user_if_absent(self, redis_store):
        user = User(id="user1", username="ayesha", password_hash="$2b$04$hash", role=Role.STUDENT)
        redis_store._create_user_script.return_value = 0

        assert redis_store.create_user_if_absent(user) is False

        redis_store._create_user_script.return_value = 1
        assert redis_store.create_user_if_absent(user) is True

    def test_find_user_by_username(self, redis_store, redis_client):
        redis_client.hget.return_value = "user1"
        redis_client.hgetall.return_value = {
            "id": "user1", "username": "ayesha", "password_hash": "$2b$04$hash",
            "role": "teacher", "created_at": "",
        }

        user = redis_store.find_user_by_username("ayesha")

        assert user.role == Role.TEACHER
        assert user.created_at is None

    def test_list_transactions_for_user(self, redis_store, redis_client):
        redis_client.zrevrange.return_value = ["txn1"]
        redis_client.pipeline.return_value.execute.return_value = [{
            "id": "txn1", "user_id": "user1", "item_id": "item1",
            "type": "Issued", "timestamp": CREATED.isoformat(), "seq": "7",
        }]

        records = redis_store.list_transactions(user_id="user1")

        assert [r.type for r in records] == [TransactionType.ISSUED]
        redis_client.zrevrange.assert_called_once_with("test:txns:user:user1", 0, -1)

    def test_read_error_is_storage_fault(self, redis_store, redis_client):
        redis_client.zrevrange.side_effect = redis.TimeoutError("timed out")

        with pytest.raises(StorageFault):
            redis_store.list_transactions()

    def test_ping_failure(self, redis_store, redis_client):
        redis_client.ping.side_effect = redis.ConnectionError("down")

        assert redis_store.ping() is False


class TestBuildStore:

    def test_memory_backend(self):
        assert isinstance(build_store("memory"), MemoryLibraryStore)

    def test_falls_back_to_memory_without_redis(self):
        with patch("lendingdesk.infrastructure.redis.get_redis_client", return_value=None):
            assert isinstance(build_store("redis"), MemoryLibraryStore)

    def test_uses_redis_when_reachable(self, redis_client):
        with patch("lendingdesk.infrastructure.redis.get_redis_client", return_value=redis_client):
            assert isinstance(build_store("redis"), RedisLibraryStore)


class TestGetStore:

    def test_concurrent_first_calls_share_one_store(self, monkeypatch):
        monkeypatch.setattr(store_module, "_store", None)

        def slow_build():
            time.sleep(0.05)
            return MemoryLibraryStore()

        monkeypatch.setattr(store_module, "build_store", slow_build)
        barrier = threading.Barrier(8)

        def first_call(_):
            barrier.wait()
            return store_module.get_store()

        with ThreadPoolExecutor(max_workers=8) as pool:
            stores = list(pool.map(first_call, range(8)))

        assert len({id(s) for s in stores}) == 1
