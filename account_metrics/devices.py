"""
Records changes to the devices registered against an account.

Clients re-register their device whenever they start up, so most updates
change nothing. Those are answered without touching the database; real
changes are written field by field and counted, so that we can see which
attributes clients actually change.
"""

from typing import Any, Mapping, NamedTuple, Optional, Tuple

from .context.propagator import MetricsContextPropagator
from .domain import Credential, Device, Request, to_hex
from .exceptions import FeatureNotEnabled
from .log import MetricsLog

CREATED = 'created'
UPDATED = 'updated'
DELETED = 'deleted'
SPURIOUS = 'spurious'

FIELDS = (
    ('sessionToken', 'session_token_id'),
    ('name', 'name'),
    ('type', 'type'),
    ('pushCallback', 'push_callback'),
    ('pushPublicKey', 'push_public_key'),
)
"""Compared device attributes, as (counter name, :class:`.Device` field)."""


class DeviceChange(NamedTuple):
    """The result of registering a device."""

    outcome: str
    """One of ``created``, ``updated`` or ``spurious``."""

    changed_fields: Tuple[str, ...] = ()
    """Counter names of the attributes that differ from the stored record."""

    response: Optional[dict] = None
    """Device data to send back to the client."""


def diff(current: Optional[Device], incoming: Device) -> Tuple[str, ...]:
    """
    Get the attributes of ``incoming`` that differ from ``current``.

    Attributes that ``incoming`` does not supply are never changes. With no
    ``current`` record, every supplied attribute is a change.
    """
    changed = []
    for name, field in FIELDS:
        value = getattr(incoming, field)
        if value is None:
            continue
        if current is None or to_hex(value) != to_hex(getattr(current, field)):
            changed.append(name)
    return tuple(changed)


class DeviceRecorder(object):
    """Applies device registrations and removals for a session."""

    def __init__(self, db: Any, log: MetricsLog,
                 metrics_context: MetricsContextPropagator,
                 updates_enabled: bool = True) -> None:
        """
        Parameters
        ----------
        db : object
            Device storage, with coroutine methods ``create_device``,
            ``update_device`` and ``delete_device``.
        log : :class:`.MetricsLog`
        metrics_context : :class:`.MetricsContextPropagator`
        updates_enabled : bool
            If ``False``, updates to existing devices are refused.

        """
        self.db = db
        self.log = log
        self.metrics_context = metrics_context
        self.updates_enabled = updates_enabled

    async def apply(self, current: Optional[Device], payload: Mapping,
                    session: Credential,
                    request: Optional[Request] = None) -> DeviceChange:
        """
        Register a device for ``session``.

        Parameters
        ----------
        current : :class:`.Device` or None
            The stored record for the device, if there is one.
        payload : dict
            Device data sent by the client.
        session : :class:`.Credential`
            The session token making the request.
        request : :class:`.Request`

        Returns
        -------
        :class:`.DeviceChange`

        Raises
        ------
        :class:`.FeatureNotEnabled`
            If the payload updates an existing device and updates are
            disabled.

        """
        request = request or Request()
        incoming = Device.from_payload(payload)._replace(
            uid=session.uid,
            session_token_id=session.token_id
        )
        if incoming.id is None and current is not None:
            incoming = incoming._replace(id=current.id)

        if incoming.id is None:
            return await self._create(incoming, payload, session, request)

        if not self.updates_enabled:
            raise FeatureNotEnabled()

        changed = diff(current, incoming)
        if current is not None and not changed:
            self.log.increment('device.update.spurious')
            return DeviceChange(SPURIOUS, (), dict(payload))
        return await self._update(incoming, changed, payload, session,
                                  request)

    async def _create(self, incoming: Device, payload: Mapping,
                      session: Credential, request: Request) -> DeviceChange:
        changed = diff(None, incoming)
        for name in changed:
            self.log.increment(f'device.create.{name}')
        device = await self.db.create_device(session.uid, session.token_id,
                                             incoming)
        device = device or incoming
        await self._emit(CREATED, request, session, device.id)
        return DeviceChange(CREATED, changed,
                            {**payload, **device.to_payload()})

    async def _update(self, incoming: Device, changed: Tuple[str, ...],
                      payload: Mapping, session: Credential,
                      request: Request) -> DeviceChange:
        for name in changed:
            self.log.increment(f'device.update.{name}')
        fields = dict(FIELDS)
        update = Device(id=incoming.id, uid=incoming.uid, **{
            fields[name]: getattr(incoming, fields[name])
            for name in changed
        })
        device = await self.db.update_device(session.uid, session.token_id,
                                             update)
        device = device or update
        await self._emit(UPDATED, request, session, incoming.id)
        return DeviceChange(UPDATED, changed,
                            {**payload, **device.to_payload()})

    async def destroy(self, session: Credential, device_id: Any,
                      request: Optional[Request] = None) -> None:
        """Remove a device, along with the session's metrics context."""
        request = request or Request()
        await self.db.delete_device(session.uid, device_id)
        await self._emit(DELETED, request, session, device_id)
        await self.metrics_context.remove(session)

    async def _emit(self, outcome: str, request: Request,
                    session: Credential, device_id: Any) -> None:
        data = {'uid': to_hex(session.uid)}
        if device_id is not None:
            data['device_id'] = to_hex(device_id)
        data = await self.metrics_context.copy(
            data, request.metrics_context, session, request.do_not_track
        )
        self.log.activity_event(f'device.{outcome}', request, data)
