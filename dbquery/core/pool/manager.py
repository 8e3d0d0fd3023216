"""
Connection pooling for the datasource a registry executes against.

Each datasource id gets its own bounded LIFO of idle connections. A pooled
connection is handed out again only if it is younger than the configured max
age, answers a ping after sitting idle, and rolls back cleanly.
"""

import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple

from dbquery.core.config import settings
from dbquery.models_query import DataSource, ProductTypeEnum

from .connect import connect
from .health import health_check

_log = logging.getLogger(__name__)

# idle seconds after which a pooled connection is pinged before reuse
_PING_AFTER_IDLE_SEC = 30.0


class _IdleConnection(NamedTuple):
    conn: Any
    opened_at: float
    returned_at: float


class _DataSourcePool:
    """Idle connections of one datasource."""

    def __init__(self, product_type: ProductTypeEnum, capacity: int) -> None:
        self.product_type = product_type
        self.capacity = capacity
        self.idle: deque[_IdleConnection] = deque()

    def take(self) -> _IdleConnection | None:
        return self.idle.pop() if self.idle else None

    def put(self, item: _IdleConnection) -> bool:
        if len(self.idle) >= self.capacity:
            return False
        self.idle.append(item)
        return True

    def drain(self) -> list[_IdleConnection]:
        items = list(self.idle)
        self.idle.clear()
        return items


class PoolManager:
    """Hands out and takes back driver connections, keyed by datasource id."""

    def __init__(self, pool_size: int | None = None, max_age: float | None = None) -> None:
        self._pools: dict[uuid.UUID, _DataSourcePool] = {}
        # id(conn) -> monotonic open time, for connections currently checked out
        self._opened: dict[int, float] = {}
        self._lock = threading.Lock()
        self.pool_size = settings.EXTERNAL_DB_POOL_SIZE if pool_size is None else pool_size
        self.max_age = float(settings.EXTERNAL_DB_POOL_MAX_AGE_SEC if max_age is None else max_age)

    def get_connection(self, datasource: DataSource) -> Any:
        """A usable connection for *datasource*, pooled if one qualifies, else new."""
        pool = self._pool_for(datasource)
        while True:
            with self._lock:
                item = pool.take()
            if item is None:
                break
            if self._reusable(item, pool.product_type):
                self._checked_out(item.conn, item.opened_at)
                return item.conn
            _discard(item.conn)

        conn = connect(datasource)
        _log.debug("Opened %s connection for datasource %s", pool.product_type.value, datasource.id)
        self._checked_out(conn, time.monotonic())
        return conn

    def release(self, conn: Any, datasource: DataSource) -> None:
        """Give *conn* back; it is closed when it cannot be rolled back or the pool is full."""
        with self._lock:
            opened_at = self._opened.pop(id(conn), time.monotonic())
        try:
            conn.rollback()
        except Exception:
            _log.debug("Rollback on release failed; closing connection", exc_info=True)
            _discard(conn)
            return
        pool = self._pool_for(datasource)
        with self._lock:
            kept = pool.put(_IdleConnection(conn, opened_at, time.monotonic()))
        if not kept:
            _discard(conn)

    @contextmanager
    def connection(self, datasource: DataSource) -> Iterator[Any]:
        """Check out a connection for the duration of the block."""
        conn = self.get_connection(datasource)
        try:
            yield conn
        finally:
            self.release(conn, datasource)

    def dispose(self, datasource_id: uuid.UUID | None = None) -> None:
        """Close idle connections of one datasource, or of all when *datasource_id* is None."""
        with self._lock:
            if datasource_id is None:
                pools = list(self._pools.values())
                self._pools.clear()
            else:
                pool = self._pools.pop(datasource_id, None)
                pools = [pool] if pool is not None else []
            items = [item for p in pools for item in p.drain()]
        for item in items:
            _discard(item.conn)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "datasources": len(self._pools),
                "idle_connections": sum(len(p.idle) for p in self._pools.values()),
                "checked_out": len(self._opened),
            }

    def _pool_for(self, datasource: DataSource) -> _DataSourcePool:
        with self._lock:
            pool = self._pools.get(datasource.id)
            if pool is None:
                pool = _DataSourcePool(ProductTypeEnum(datasource.product_type), self.pool_size)
                self._pools[datasource.id] = pool
            return pool

    def _checked_out(self, conn: Any, opened_at: float) -> None:
        with self._lock:
            self._opened[id(conn)] = opened_at

    def _reusable(self, item: _IdleConnection, product_type: ProductTypeEnum) -> bool:
        now = time.monotonic()
        if now - item.opened_at > self.max_age:
            return False
        if now - item.returned_at > _PING_AFTER_IDLE_SEC and not health_check(item.conn, product_type):
            _log.debug("Pooled %s connection failed its ping", product_type.value)
            return False
        try:
            item.conn.rollback()
        except Exception:
            return False
        return True


def _discard(conn: Any) -> None:
    try:
        conn.close()
    except Exception:
        _log.debug("Closing pooled connection failed", exc_info=True)


_pool_manager: PoolManager | None = None
_pool_lock = threading.Lock()


def get_pool_manager() -> PoolManager:
    """Process-wide PoolManager, created on first use."""
    global _pool_manager
    if _pool_manager is None:
        with _pool_lock:
            if _pool_manager is None:
                _pool_manager = PoolManager()
    return _pool_manager
