"""Redis-backed store for users, catalog items and the transaction ledger.

Records are Redis hashes. Ordering uses sorted sets: items are scored by
creation time, ledger records by an append sequence from ``INCR`` so that
records written in the same instant keep their order.

Key layout (all under ``key_prefix``)::

    user:<id>            hash   user record
    users:by_name        hash   username -> user id
    item:<id>            hash   item record
    items                zset   item ids by created_at
    txn:<id>             hash   transaction record
    txns                 zset   all transaction ids by sequence
    txns:user:<id>       zset   a user's transaction ids
    txns:item:<id>       zset   an item's transaction ids
    txn:seq              string append sequence

The lending transition, the cascading delete and username reservation are
Lua scripts, so each runs as one atomic step on the server.
"""
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

import redis

from lendingdesk.core.config import settings
from lendingdesk.core.errors import StorageFault
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.transaction import TransactionRecord
from lendingdesk.domain.user import User
from lendingdesk.infrastructure.store import LibraryStore, TransitionOutcome

logger = get_logger(__name__)

# Redis connection pool (lazy initialization)
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def get_redis_client(
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[int] = None,
    password: Optional[str] = None,
) -> Optional[redis.Redis]:
    """Get or create Redis client with connection pooling.

    Uses settings from environment variables if not explicitly provided.
    Returns None if Redis is not available.

    Args:
        host: Redis host (default from REDIS_HOST env)
        port: Redis port (default from REDIS_PORT env)
        db: Redis database number (default from REDIS_DB env)
        password: Redis password (default from REDIS_PASSWORD env)

    Returns:
        Redis client instance or None if unavailable
    """
    global _redis_pool, _redis_client

    host = host or settings.redis_host
    port = port or settings.redis_port
    db = db if db is not None else settings.redis_db
    password = password or settings.redis_password

    if _redis_client is None:
        logger.info(f"Initializing Redis connection pool: {host}:{port}")

        try:
            _redis_pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                max_connections=50,
                socket_connect_timeout=settings.redis_timeout_seconds,
                socket_timeout=settings.redis_timeout_seconds,
            )

            _redis_client = redis.Redis(connection_pool=_redis_pool)

            _redis_client.ping()
            logger.info("Redis connection established successfully")

        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            _redis_client = None
            return None

    return _redis_client


# KEYS: item, txn, txns, txns:user:<uid>, txns:item:<iid>, txn:seq
# ARGV: expected state, new state, txn id, user id, item id, txn type, timestamp
TRANSITION_SCRIPT = """
local state = redis.call('HGET', KEYS[1], 'lending_state')
if not state then
  return {0}
end
if state ~= ARGV[1] then
  return {-1}
end
redis.call('HSET', KEYS[1], 'lending_state', ARGV[2])
local seq = redis.call('INCR', KEYS[6])
redis.call('HSET', KEYS[2], 'id', ARGV[3], 'user_id', ARGV[4], 'item_id', ARGV[5],
           'type', ARGV[6], 'timestamp', ARGV[7], 'seq', seq)
redis.call('ZADD', KEYS[3], seq, ARGV[3])
redis.call('ZADD', KEYS[4], seq, ARGV[3])
redis.call('ZADD', KEYS[5], seq, ARGV[3])
return {1, redis.call('HGETALL', KEYS[1])}
"""

# KEYS: item, items, txns:item:<iid>, txns
# ARGV: key prefix, item id
DELETE_ITEM_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return -1
end
local ids = redis.call('ZRANGE', KEYS[3], 0, -1)
for _, txn_id in ipairs(ids) do
  local txn_key = ARGV[1] .. 'txn:' .. txn_id
  local user_id = redis.call('HGET', txn_key, 'user_id')
  if user_id then
    redis.call('ZREM', ARGV[1] .. 'txns:user:' .. user_id, txn_id)
  end
  redis.call('ZREM', KEYS[4], txn_id)
  redis.call('DEL', txn_key)
end
redis.call('DEL', KEYS[3])
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[2])
return #ids
"""

# KEYS: users:by_name, user:<id>
# ARGV: username, user id, password hash, role, created_at
CREATE_USER_SCRIPT = """
if redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2]) == 0 then
  return 0
end
redis.call('HSET', KEYS[2], 'id', ARGV[2], 'username', ARGV[1], 'password_hash', ARGV[3],
           'role', ARGV[4], 'created_at', ARGV[5])
return 1
"""


def _pairs_to_dict(flat: List[str]) -> Dict[str, str]:
    """Turn a flat HGETALL reply from a script into a dict."""
    return dict(zip(flat[::2], flat[1::2]))


class RedisLibraryStore(LibraryStore):
    """Redis implementation of the library store.

    Every Redis error is logged and re-raised as ``StorageFault``; nothing
    is retried here.

    Example:
        >>> store = RedisLibraryStore(get_redis_client())
        >>> store.create_item(item)
        >>> outcome, updated = store.transition(item.id, LendingState.AVAILABLE, record)
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "lendingdesk:"):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._transition_script = self.redis.register_script(TRANSITION_SCRIPT)
        self._delete_item_script = self.redis.register_script(DELETE_ITEM_SCRIPT)
        self._create_user_script = self.redis.register_script(CREATE_USER_SCRIPT)

        logger.info(f"RedisLibraryStore initialized with key prefix {key_prefix!r}")

    def _key(self, *parts: str) -> str:
        return self.key_prefix + ":".join(parts)

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except redis.RedisError as e:
            logger.error(
                f"Redis {operation} failed: {e}",
                extra={"operation": operation, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise StorageFault(f"Redis {operation} failed") from e

    # Identity

    def create_user_if_absent(self, user: User) -> bool:
        with self._guard("create_user"):
            created = self._create_user_script(
                keys=[self._key("users", "by_name"), self._key("user", user.id)],
                args=[
                    user.username,
                    user.id,
                    user.password_hash,
                    user.role.value,
                    user.created_at.isoformat() if user.created_at else "",
                ],
            )
        return bool(created)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._guard("get_user"):
            data = self.redis.hgetall(self._key("user", user_id))
        return self._user_from_hash(data)

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._guard("find_user"):
            user_id = self.redis.hget(self._key("users", "by_name"), username)
            if not user_id:
                return None
            data = self.redis.hgetall(self._key("user", user_id))
        return self._user_from_hash(data)

    @staticmethod
    def _user_from_hash(data: Dict[str, str]) -> Optional[User]:
        if not data:
            return None
        if not data.get("created_at"):
            data = {k: v for k, v in data.items() if k != "created_at"}
        return User(**data)

    # Catalog

    def create_item(self, item: Item) -> None:
        with self._guard("create_item"):
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(self._key("item", item.id), mapping=self._item_to_hash(item))
            pipe.zadd(self._key("items"), {item.id: item.created_at.timestamp()})
            pipe.execute()

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._guard("get_item"):
            data = self.redis.hgetall(self._key("item", item_id))
        return Item(**data) if data else None

    def list_items(self) -> List[Item]:
        with self._guard("list_items"):
            ids = self.redis.zrevrange(self._key("items"), 0, -1)
            rows = self._fetch_hashes("item", ids)
        return [Item(**row) for row in rows if row]

    def delete_item(self, item_id: str) -> Optional[int]:
        with self._guard("delete_item"):
            removed = self._delete_item_script(
                keys=[
                    self._key("item", item_id),
                    self._key("items"),
                    self._key("txns", "item", item_id),
                    self._key("txns"),
                ],
                args=[self.key_prefix, item_id],
            )
        removed = int(removed)
        return None if removed < 0 else removed

    @staticmethod
    def _item_to_hash(item: Item) -> Dict[str, str]:
        return {
            "id": item.id,
            "name": item.name,
            "author": item.author,
            "page_count": str(item.page_count),
            "price": repr(float(item.price)),
            "lending_state": item.lending_state.value,
            "created_at": item.created_at.isoformat(),
        }

    # Lending + ledger

    def transition(
        self,
        item_id: str,
        expected: LendingState,
        record: TransactionRecord,
    ) -> Tuple[TransitionOutcome, Optional[Item]]:
        with self._guard("transition"):
            reply = self._transition_script(
                keys=[
                    self._key("item", item_id),
                    self._key("txn", record.id),
                    self._key("txns"),
                    self._key("txns", "user", record.user_id),
                    self._key("txns", "item", item_id),
                    self._key("txn", "seq"),
                ],
                args=[
                    expected.value,
                    record.type.resulting_state.value,
                    record.id,
                    record.user_id,
                    item_id,
                    record.type.value,
                    record.timestamp.isoformat(),
                ],
            )

        status = int(reply[0])
        if status == 0:
            return TransitionOutcome.NOT_FOUND, None
        if status < 0:
            return TransitionOutcome.CONFLICT, None
        return TransitionOutcome.APPLIED, Item(**_pairs_to_dict(reply[1]))

    def list_transactions(self, user_id: Optional[str] = None) -> List[TransactionRecord]:
        index = self._key("txns", "user", user_id) if user_id else self._key("txns")
        with self._guard("list_transactions"):
            ids = self.redis.zrevrange(index, 0, -1)
            rows = self._fetch_hashes("txn", ids)
        return [self._record_from_hash(row) for row in rows if row]

    def last_transaction(self, item_id: str) -> Optional[TransactionRecord]:
        with self._guard("last_transaction"):
            ids = self.redis.zrevrange(self._key("txns", "item", item_id), 0, 0)
            rows = self._fetch_hashes("txn", ids)
        return self._record_from_hash(rows[0]) if rows and rows[0] else None

    @staticmethod
    def _record_from_hash(data: Dict[str, str]) -> TransactionRecord:
        data = {k: v for k, v in data.items() if k != "seq"}
        return TransactionRecord(**data)

    def _fetch_hashes(self, kind: str, ids: List[str]) -> List[Dict[str, str]]:
        if not ids:
            return []
        pipe = self.redis.pipeline(transaction=False)
        for record_id in ids:
            pipe.hgetall(self._key(kind, record_id))
        return pipe.execute()

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
