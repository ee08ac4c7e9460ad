"""Tests for :mod:`account_metrics.log`."""

import io
import json
import logging
from unittest import TestCase

from .. import log
from ..domain import Request


class TestMetricsLog(TestCase):
    """Records carry the operation and its details as structured fields."""

    def setUp(self):
        self.logger = logging.getLogger('account_metrics.tests')
        self.sink = log.MetricsLog(self.logger)

    def test_error(self):
        with self.assertLogs(self.logger, level='ERROR') as logs:
            self.sink.error('metricsContext.restore', err=ValueError('foo'))
        record = logs.records[0]
        self.assertEqual(record.op, 'metricsContext.restore')
        self.assertEqual(record.err, 'foo')

    def test_increment(self):
        with self.assertLogs(self.logger, level='INFO') as logs:
            self.sink.increment('device.update.spurious')
        record = logs.records[0]
        self.assertEqual(record.op, 'increment')
        self.assertEqual(record.stat, 'device.update.spurious')

    def test_activity_event(self):
        request = Request(user_agent='foo')
        with self.assertLogs(self.logger, level='INFO') as logs:
            self.sink.activity_event('account.login', request, {'uid': 'ab'})
        record = logs.records[0]
        self.assertEqual(record.event, 'account.login')
        self.assertEqual(record.userAgent, 'foo')
        self.assertEqual(record.data, {'uid': 'ab'})


class TestSetupLogger(TestCase):
    """Tests for :func:`log.setup_logger`."""

    def test_json_output(self):
        """Records are written as JSON objects."""
        logger = log.setup_logger('DEBUG')
        self.assertEqual(len(logger.handlers), 1)
        self.assertIs(log.setup_logger(), logger,
                      'Handlers are not added twice')
        self.assertEqual(len(logger.handlers), 1)

        stream = io.StringIO()
        logger.handlers[0].setStream(stream)
        log.MetricsLog(logger).info('flow.validate', reason='valid')

        output = json.loads(stream.getvalue())
        self.assertEqual(output['message'], 'flow.validate')
        self.assertEqual(output['op'], 'flow.validate')
        self.assertEqual(output['data'], {'reason': 'valid'})
        self.assertEqual(output['level'], 'INFO')
