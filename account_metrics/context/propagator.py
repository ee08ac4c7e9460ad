"""
Carries flow metrics context along with the credentials a user is issued.

When a request issues a credential, the metrics context sent by the client is
cached against it (:meth:`.MetricsContextPropagator.save`). Later requests
authenticated by that credential do not resend the context; instead it is
restored from the cache and stamped onto the activity events they emit
(:meth:`.MetricsContextPropagator.copy`).
"""

from enum import Enum
from typing import Any, Mapping, NamedTuple, Optional, Union

from .. import flow
from ..domain import ATTRIBUTION_FIELDS, Credential, MetricsContext
from ..log import MetricsLog
from .store import ContextStore

Metadata = Union[MetricsContext, dict, None]


class Source(Enum):
    """Where the metrics context for an event came from."""

    INLINE = 'inline'
    RESTORED = 'restored'
    ABSENT = 'absent'


class Resolution(NamedTuple):
    """The metrics context to use for an event, tagged by its origin."""

    source: Source
    metadata: Optional[MetricsContext] = None


ABSENT = Resolution(Source.ABSENT)


def stamp(data: Mapping[str, Any], metadata: MetricsContext,
          do_not_track: Any = False, now: Optional[int] = None) -> dict:
    """
    Add the flow fields from ``metadata`` to a copy of ``data``.

    Parameters
    ----------
    data : dict
        Event attributes.
    metadata : :class:`.MetricsContext`
    do_not_track : bool
        If truthy, the ``utm_*`` attribution fields are left out. ``None``
        means the client expressed no preference, so tracking is allowed.
    now : int
        Epoch milliseconds; defaults to the current time.

    Returns
    -------
    dict

    """
    if now is None:
        now = flow.now()
    stamped = dict(data)
    stamped['time'] = now
    stamped['flow_id'] = metadata.flow_id
    stamped['flow_time'] = flow_time(now, metadata.flow_begin_time)
    stamped['context'] = metadata.context
    stamped['entrypoint'] = metadata.entrypoint
    stamped['migration'] = metadata.migration
    stamped['service'] = metadata.service
    if not do_not_track:
        for field in ATTRIBUTION_FIELDS:
            stamped[field] = getattr(metadata, field)
    return stamped


def redact(metadata: Metadata) -> Optional[MetricsContext]:
    """Get ``metadata`` without its ``utm_*`` attribution fields."""
    metadata = MetricsContext.from_payload(metadata)
    if metadata is None:
        return None
    return MetricsContext.from_payload(
        metadata._replace(**{field: None for field in ATTRIBUTION_FIELDS})
    )


def flow_time(now: int, flow_begin_time: Optional[int]) -> int:
    """Milliseconds since the flow began, never negative."""
    if not flow_begin_time or now <= flow_begin_time:
        return 0
    return now - flow_begin_time


class MetricsContextPropagator(object):
    """Resolves, stamps, and caches metrics context for credentials."""

    def __init__(self, store: ContextStore,
                 log: Optional[MetricsLog] = None) -> None:
        self.store = store
        self.log = log or MetricsLog()

    async def resolve(self, metadata: Metadata,
                      credential: Optional[Credential]) -> Resolution:
        """
        Pick the metrics context for an event.

        Context sent with the request wins; failing that, context cached
        against ``credential`` is used. Cache failures are treated the same
        as an empty cache.
        """
        inline = MetricsContext.from_payload(metadata)
        if inline is not None:
            return Resolution(Source.INLINE, inline)
        if credential is None:
            return ABSENT
        try:
            restored = await self.store.restore(credential.key)
        except Exception as e:
            self.log.error('metricsContext.copy', err=e)
            return ABSENT
        if restored is None:
            return ABSENT
        return Resolution(Source.RESTORED, restored)

    async def copy(self, data: Mapping[str, Any], metadata: Metadata = None,
                   credential: Optional[Credential] = None,
                   do_not_track: Any = False) -> dict:
        """
        Stamp the resolved metrics context onto a copy of ``data``.

        If no context can be resolved, the copy has no flow fields.
        """
        resolution = await self.resolve(metadata, credential)
        if resolution.source is Source.ABSENT:
            return dict(data)
        return stamp(data, resolution.metadata, do_not_track)

    async def save(self, credential: Optional[Credential],
                   metadata: Metadata, do_not_track: Any = False) -> Any:
        """
        Cache the metrics context sent with a request against a credential.

        Only the context as received is cached, never a stamped derivative,
        so every credential issued in a flow restores the same data. If
        ``do_not_track`` is truthy the attribution fields are not cached.
        """
        if credential is None:
            return None
        if do_not_track:
            metadata = redact(metadata)
        return await self.store.save(credential.key, metadata)

    async def restore(self, credential: Optional[Credential]) \
            -> Optional[MetricsContext]:
        if credential is None:
            return None
        return await self.store.restore(credential.key)

    async def remove(self, credential: Optional[Credential]) -> Any:
        """Forget the metrics context for a consumed credential."""
        if credential is None:
            return None
        return await self.store.remove(credential.key)
