"""
Propagation of flow metrics context across requests.

Metrics context sent by a client when a credential is issued is held in a
key-value store under the credential's identifier, so that later requests
made with that credential can be correlated with the same flow.

See :mod:`.store` and :mod:`.propagator`.
"""

from . import store, propagator
from .store import ContextStore
from .propagator import MetricsContextPropagator, Resolution, Source
