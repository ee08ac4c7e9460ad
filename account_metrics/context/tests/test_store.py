"""Tests for :mod:`account_metrics.context.store`."""

import asyncio
import json
from unittest import IsolatedAsyncioTestCase, TestCase, mock

from redis.exceptions import ConnectionError, TimeoutError

from ...domain import MetricsContext
from ...log import MetricsLog
from .. import store

FLOW_ID = 'f' * 64


def _connection():
    connection = mock.MagicMock()
    connection.get = mock.AsyncMock(return_value=None)
    connection.set = mock.AsyncMock(return_value=True)
    connection.delete = mock.AsyncMock(return_value=1)
    connection.aclose = mock.AsyncMock()
    return connection


def _metadata():
    return MetricsContext(flow_id=FLOW_ID, flow_begin_time=1234,
                          service='sync', utm_source='email')


class TestSave(IsolatedAsyncioTestCase):
    """Metrics context is cached against a credential."""

    def setUp(self):
        self.log = mock.MagicMock(spec=MetricsLog)
        self.cache = store.ContextStore('localhost', 6379, log=self.log)

    @mock.patch(f'{store.__name__}.redis')
    async def test_save(self, mock_redis):
        """The metrics context is set under the credential key."""
        connection = _connection()
        mock_redis.asyncio.Redis.return_value = connection

        result = await self.cache.save('foo', _metadata())

        self.assertTrue(result)
        self.assertEqual(connection.set.call_count, 1)
        key, value = connection.set.call_args[0]
        self.assertEqual(key, 'foo')
        self.assertEqual(json.loads(value), {
            'flowId': FLOW_ID,
            'flowBeginTime': 1234,
            'service': 'sync',
            'utmSource': 'email'
        })
        self.assertIsNone(connection.set.call_args[1]['ex'],
                          'No expiry by default')
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_save_with_ttl(self, mock_redis):
        """A configured lifetime is passed to the cache."""
        connection = _connection()
        mock_redis.asyncio.Redis.return_value = connection
        cache = store.ContextStore('localhost', 6379, ttl=60, log=self.log)

        await cache.save('foo', _metadata())

        self.assertEqual(connection.set.call_args[1]['ex'], 60)

    @mock.patch(f'{store.__name__}.redis')
    async def test_save_payload(self, mock_redis):
        """Metrics context can be passed as it was sent by the client."""
        connection = _connection()
        mock_redis.asyncio.Redis.return_value = connection

        await self.cache.save('foo', {'flowId': FLOW_ID, 'flowBeginTime': 1,
                                      'ignore': 'me'})

        _, value = connection.set.call_args[0]
        self.assertEqual(json.loads(value),
                         {'flowId': FLOW_ID, 'flowBeginTime': 1})

    @mock.patch(f'{store.__name__}.redis')
    async def test_save_error(self, mock_redis):
        """A cache failure is logged and swallowed."""
        connection = _connection()
        error = ConnectionError('wibble')
        connection.set.side_effect = error
        mock_redis.asyncio.Redis.return_value = connection

        result = await self.cache.save('foo', _metadata())

        self.assertIsNone(result)
        self.assertEqual(connection.set.call_count, 1)
        self.log.error.assert_called_once_with('metricsContext.save',
                                               err=error)

    @mock.patch(f'{store.__name__}.redis')
    async def test_save_without_key(self, mock_redis):
        """Nothing is sent to the cache without a credential key."""
        result = await self.cache.save(None, _metadata())

        self.assertIsNone(result)
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_save_without_metadata(self, mock_redis):
        """Nothing is sent to the cache without metrics context."""
        result = await self.cache.save('foo', None)

        self.assertIsNone(result)
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)
        self.assertEqual(self.log.error.call_count, 0)


class TestRestore(IsolatedAsyncioTestCase):
    """Cached metrics context is read back by credential key."""

    def setUp(self):
        self.log = mock.MagicMock(spec=MetricsLog)
        self.cache = store.ContextStore('localhost', 6379, log=self.log)

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore(self, mock_redis):
        """A :class:`.MetricsContext` is returned."""
        connection = _connection()
        connection.get.return_value = json.dumps({
            'flowId': FLOW_ID,
            'flowBeginTime': 1234,
            'service': 'sync',
            'utmSource': 'email'
        })
        mock_redis.asyncio.Redis.return_value = connection

        metadata = await self.cache.restore('foo')

        connection.get.assert_awaited_once_with('foo')
        self.assertEqual(metadata, _metadata())
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore_nothing_cached(self, mock_redis):
        """``None`` is returned if nothing was cached for the key."""
        mock_redis.asyncio.Redis.return_value = _connection()

        self.assertIsNone(await self.cache.restore('foo'))
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore_error(self, mock_redis):
        """A cache failure is logged once and treated as a miss."""
        connection = _connection()
        error = TimeoutError('foo')
        connection.get.side_effect = error
        mock_redis.asyncio.Redis.return_value = connection

        self.assertIsNone(await self.cache.restore('bar'))
        self.log.error.assert_called_once_with('metricsContext.restore',
                                               err=error)

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore_garbage(self, mock_redis):
        """A value that is not JSON is logged and treated as a miss."""
        connection = _connection()
        connection.get.return_value = 'not json{'
        mock_redis.asyncio.Redis.return_value = connection

        self.assertIsNone(await self.cache.restore('bar'))
        self.assertEqual(self.log.error.call_count, 1)
        self.assertEqual(self.log.error.call_args[0][0],
                         'metricsContext.restore')

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore_empty(self, mock_redis):
        """An empty cached object is treated as a miss."""
        connection = _connection()
        connection.get.return_value = '{}'
        mock_redis.asyncio.Redis.return_value = connection

        self.assertIsNone(await self.cache.restore('bar'))
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_restore_without_key(self, mock_redis):
        """Nothing is read from the cache without a credential key."""
        self.assertIsNone(await self.cache.restore(None))
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)


class TestRemove(IsolatedAsyncioTestCase):
    """Cached metrics context is dropped when the credential is spent."""

    def setUp(self):
        self.log = mock.MagicMock(spec=MetricsLog)
        self.cache = store.ContextStore('localhost', 6379, log=self.log)

    @mock.patch(f'{store.__name__}.redis')
    async def test_remove(self, mock_redis):
        """The key is deleted."""
        connection = _connection()
        mock_redis.asyncio.Redis.return_value = connection

        result = await self.cache.remove('wibble')

        self.assertEqual(result, 1)
        connection.delete.assert_awaited_once_with('wibble')
        self.assertEqual(self.log.error.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_remove_error(self, mock_redis):
        """A cache failure is logged and swallowed."""
        connection = _connection()
        error = ConnectionError('foo')
        connection.delete.side_effect = error
        mock_redis.asyncio.Redis.return_value = connection

        self.assertIsNone(await self.cache.remove('bar'))
        self.log.error.assert_called_once_with('metricsContext.remove',
                                               err=error)

    @mock.patch(f'{store.__name__}.redis')
    async def test_remove_without_key(self, mock_redis):
        """Nothing is sent to the cache without a credential key."""
        self.assertIsNone(await self.cache.remove(None))
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)
        self.assertEqual(self.log.error.call_count, 0)


class TestConnection(IsolatedAsyncioTestCase):
    """The Redis client is created lazily, once."""

    def setUp(self):
        self.log = mock.MagicMock(spec=MetricsLog)

    @mock.patch(f'{store.__name__}.redis')
    async def test_lazy(self, mock_redis):
        """No client exists until the cache is first used."""
        mock_redis.asyncio.Redis.return_value = _connection()
        cache = store.ContextStore('localhost', 6379, db=2, timeout=0.25,
                                   retries=3, log=self.log)
        self.assertFalse(cache.connected)
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)

        await cache.restore('foo')
        await cache.remove('foo')

        self.assertTrue(cache.connected)
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 1)
        kwargs = mock_redis.asyncio.Redis.call_args[1]
        self.assertEqual(kwargs['host'], 'localhost')
        self.assertEqual(kwargs['port'], 6379)
        self.assertEqual(kwargs['db'], 2)
        self.assertEqual(kwargs['socket_timeout'], 0.25)
        self.assertEqual(kwargs['socket_connect_timeout'], 0.25)

    @mock.patch(f'{store.__name__}.redis')
    async def test_cluster(self, mock_redis):
        """A cluster client is used in cluster mode."""
        mock_redis.asyncio.RedisCluster.return_value = _connection()
        cache = store.ContextStore('localhost', 7000, cluster=True,
                                   log=self.log)

        await cache.restore('foo')

        self.assertEqual(mock_redis.asyncio.RedisCluster.call_count, 1)
        self.assertEqual(mock_redis.asyncio.Redis.call_count, 0)

    @mock.patch(f'{store.__name__}.redis')
    async def test_construction_fails(self, mock_redis):
        """The store falls back to doing nothing for good."""
        error = ValueError('bad url')
        mock_redis.asyncio.Redis.side_effect = error
        cache = store.ContextStore('localhost', 6379, log=self.log)

        self.assertIsNone(await cache.save('foo', _metadata()))
        self.assertIsNone(await cache.restore('foo'))
        self.assertIsNone(await cache.remove('foo'))

        self.assertEqual(mock_redis.asyncio.Redis.call_count, 1,
                         'Construction is not attempted again')
        self.log.error.assert_called_once_with('metricsContext.connect',
                                               err=error)

    @mock.patch(f'{store.__name__}.redis')
    async def test_slow_cache(self, mock_redis):
        """A call that outlasts the timeout budget is abandoned."""
        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        connection = _connection()
        connection.get.side_effect = hang
        mock_redis.asyncio.Redis.return_value = connection
        cache = store.ContextStore('localhost', 6379, timeout=0.01,
                                   retries=0, log=self.log)

        self.assertIsNone(await cache.restore('foo'))
        self.assertEqual(self.log.error.call_count, 1)
        self.assertEqual(self.log.error.call_args[0][0],
                         'metricsContext.restore')

    @mock.patch(f'{store.__name__}.redis')
    async def test_close(self, mock_redis):
        """The connection pool is released."""
        connection = _connection()
        mock_redis.asyncio.Redis.return_value = connection
        cache = store.ContextStore('localhost', 6379, log=self.log)

        await cache.close()
        self.assertEqual(connection.aclose.await_count, 0,
                         'Nothing to close before first use')

        await cache.restore('foo')
        await cache.close()
        self.assertEqual(connection.aclose.await_count, 1)


class TestFromConfig(TestCase):
    """Tests for :meth:`.ContextStore.from_config`."""

    def test_defaults(self):
        """Defaults are filled in by :func:`store.init_app`."""
        config = {}
        store.init_app(config)
        cache = store.ContextStore.from_config(config)
        self.assertEqual(cache._host, 'localhost')
        self.assertEqual(cache._port, 6379)
        self.assertFalse(cache._cluster)
        self.assertEqual(cache._ttl, 0)

    def test_cluster(self):
        """Cluster mode is switched on with ``REDIS_CLUSTER=1``."""
        cache = store.ContextStore.from_config({
            'REDIS_HOST': 'redis',
            'REDIS_PORT': '7000',
            'REDIS_CLUSTER': '1',
            'METRICS_CONTEXT_TIMEOUT': '2',
            'METRICS_CONTEXT_RETRIES': '0'
        })
        self.assertEqual(cache._host, 'redis')
        self.assertEqual(cache._port, 7000)
        self.assertTrue(cache._cluster)
        self.assertEqual(cache._timeout, 2.0)
        self.assertEqual(cache._retries, 0)
