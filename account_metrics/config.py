"""Configuration for the account flow metrics context."""

import os

LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO')

REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_CLUSTER = os.environ.get('REDIS_CLUSTER', '0')

METRICS_CONTEXT_TIMEOUT = os.environ.get('METRICS_CONTEXT_TIMEOUT', '0.5')
"""Seconds to wait on any single cache call before giving up."""

METRICS_CONTEXT_RETRIES = os.environ.get('METRICS_CONTEXT_RETRIES', '1')
"""Number of times a failed cache call is retried."""

METRICS_CONTEXT_TTL = os.environ.get('METRICS_CONTEXT_TTL', '0')
"""Lifetime of cached metrics context in seconds; ``0`` means no expiry."""

FLOW_ID_KEY = os.environ.get('FLOW_ID_KEY', 'YOU MUST CHANGE ME')
"""Shared secret used to sign flow ids."""

FLOW_ID_EXPIRY = os.environ.get('FLOW_ID_EXPIRY', str(2 * 60 * 60 * 1000))
"""Maximum age of a flow, in milliseconds."""

DEVICE_UPDATES_ENABLED = os.environ.get('DEVICE_UPDATES_ENABLED', '1')
