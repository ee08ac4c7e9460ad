"""
Best-effort cache of metrics context, keyed by credential.

The cache only speeds up correlation of activity events; the account service
is correct without it. Every failure is therefore logged and reported to the
caller as "nothing there", and no call can hold up a request for longer than
the configured timeout and retry budget.
"""

import asyncio
import json
import logging
from typing import Any, Mapping, MutableMapping, Optional, Union

import redis
import redis.asyncio
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError, TimeoutError

from ..domain import MetricsContext
from ..log import MetricsLog

logger = logging.getLogger(__name__)


class NullCache(object):
    """Stands in for Redis when a connection cannot be set up at all."""

    async def get(self, key: str) -> None:
        return None

    async def set(self, key: str, value: str, ex: Optional[int] = None) \
            -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def aclose(self) -> None:
        return None


class ContextStore(object):
    """
    Manages a connection to Redis for cached metrics context.

    The client is created on first use rather than at startup, so that a
    process can come up while the cache is unreachable. If the client cannot
    be created at all, this store falls back to a :class:`.NullCache` for the
    rest of its life.
    """

    def __init__(self, host: str, port: int, db: int = 0,
                 cluster: bool = False, timeout: float = 0.5,
                 retries: int = 1, ttl: int = 0,
                 log: Optional[MetricsLog] = None) -> None:
        self._host = host
        self._port = port
        self._db = db
        self._cluster = cluster
        self._timeout = timeout
        self._retries = retries
        self._ttl = ttl
        self._redis: Any = None
        self.log = log or MetricsLog()

    @classmethod
    def from_config(cls, config: Mapping[str, Any],
                    log: Optional[MetricsLog] = None) -> 'ContextStore':
        """Get a store configured from an application config mapping."""
        return cls(
            host=config.get('REDIS_HOST', 'localhost'),
            port=int(config.get('REDIS_PORT', '6379')),
            db=int(config.get('REDIS_DATABASE', '0')),
            cluster=config.get('REDIS_CLUSTER', '0') == '1',
            timeout=float(config.get('METRICS_CONTEXT_TIMEOUT', '0.5')),
            retries=int(config.get('METRICS_CONTEXT_RETRIES', '1')),
            ttl=int(config.get('METRICS_CONTEXT_TTL', '0')),
            log=log
        )

    @property
    def connected(self) -> bool:
        """Whether a client (real or stand-in) has been set up yet."""
        return self._redis is not None

    def _connect(self) -> Any:
        logger.debug('New Redis connection at %s, port %s', self._host,
                     self._port)
        params = dict(
            socket_timeout=self._timeout,
            socket_connect_timeout=self._timeout,
            retry=Retry(NoBackoff(), self._retries),
            retry_on_error=[ConnectionError, TimeoutError],
            decode_responses=True
        )
        if self._cluster:
            return redis.asyncio.RedisCluster(host=self._host,
                                              port=self._port, **params)
        return redis.asyncio.Redis(host=self._host, port=self._port,
                                   db=self._db, **params)

    def _connection(self) -> Any:
        if self._redis is None:
            try:
                self._redis = self._connect()
            except Exception as e:
                self.log.error('metricsContext.connect', err=e)
                self._redis = NullCache()
        return self._redis

    @property
    def _deadline(self) -> float:
        # Connect and read each get ``timeout`` per attempt.
        return 2 * self._timeout * (self._retries + 1)

    async def _call(self, op: str, command: str, *args: Any,
                    **kwargs: Any) -> Any:
        try:
            method = getattr(self._connection(), command)
            return await asyncio.wait_for(method(*args, **kwargs),
                                          self._deadline)
        except Exception as e:
            self.log.error(op, err=e)
            return None

    async def save(self, key: Optional[str],
                   metadata: Union[MetricsContext, dict, None]) -> Any:
        """
        Cache ``metadata`` against the credential identified by ``key``.

        Does nothing if either argument is absent.

        Parameters
        ----------
        key : str
            Hex identifier of the credential.
        metadata : :class:`.MetricsContext` or dict

        """
        metadata = MetricsContext.from_payload(metadata)
        if not key or metadata is None:
            return None
        value = json.dumps(metadata.to_payload())
        return await self._call('metricsContext.save', 'set', key, value,
                                ex=self._ttl or None)

    async def restore(self, key: Optional[str]) -> Optional[MetricsContext]:
        """
        Get the metrics context cached against ``key``.

        Returns
        -------
        :class:`.MetricsContext` or None
            ``None`` if nothing is cached or the cache is unavailable.

        """
        if not key:
            return None
        raw = await self._call('metricsContext.restore', 'get', key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError as e:
            self.log.error('metricsContext.restore', err=e)
            return None
        return MetricsContext.from_payload(data)

    async def remove(self, key: Optional[str]) -> Any:
        """Drop the metrics context cached against ``key``."""
        if not key:
            return None
        return await self._call('metricsContext.remove', 'delete', key)

    async def close(self) -> None:
        """Release the connection pool, if one was ever created."""
        if self._redis is not None:
            await self._redis.aclose()


def init_app(config: MutableMapping[str, Any]) -> None:
    """Set default configuration parameters for the cache."""
    config.setdefault('REDIS_HOST', 'localhost')
    config.setdefault('REDIS_PORT', '6379')
    config.setdefault('REDIS_DATABASE', '0')
    config.setdefault('REDIS_CLUSTER', '0')
    config.setdefault('METRICS_CONTEXT_TIMEOUT', '0.5')
    config.setdefault('METRICS_CONTEXT_RETRIES', '1')
    config.setdefault('METRICS_CONTEXT_TTL', '0')
