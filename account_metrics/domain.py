"""Defines the data passed between the account service and this package."""

import re
from typing import Any, Mapping, NamedTuple, Optional, Union

HEX_STRING = re.compile(r'^(?:[a-fA-F0-9]{2})+$')
FLOW_ID_LENGTH = 64

TokenId = Union[bytes, str]


def to_hex(value: Optional[TokenId]) -> Optional[str]:
    """Get the hex form of an identifier that may be raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


class MetricsContext(NamedTuple):
    """
    Correlation metadata for a single user journey (a "flow").

    ``flow_id`` and ``flow_begin_time`` are either both present or both
    absent; see :meth:`from_payload`.
    """

    flow_id: Optional[str] = None
    """Random hex prefix followed by a truncated signature."""

    flow_begin_time: Optional[int] = None
    """Epoch milliseconds at which the flow began."""

    context: Optional[str] = None
    entrypoint: Optional[str] = None
    migration: Optional[str] = None
    service: Optional[str] = None

    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_source: Optional[str] = None
    utm_term: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional['MetricsContext']:
        """
        Parse the ``metricsContext`` object sent by a client.

        Unknown keys are ignored. Anything that does not fit the schema,
        including a ``flowId`` without a ``flowBeginTime`` (or vice versa),
        yields ``None``: the caller carries on as if no metadata were sent.
        So does an empty context.

        Parameters
        ----------
        payload : dict or :class:`.MetricsContext`

        Returns
        -------
        :class:`.MetricsContext` or None

        """
        if isinstance(payload, MetricsContext):
            return payload if payload.present else None
        if not isinstance(payload, Mapping):
            return None
        data = {}
        for wire_name, field in WIRE_FIELDS:
            value = payload.get(wire_name)
            if value is None:
                continue
            if not _valid(field, value):
                return None
            data[field] = value
        if not data or ('flow_id' in data) != ('flow_begin_time' in data):
            return None
        return cls(**data)

    @property
    def present(self) -> bool:
        """Whether any field is set."""
        return any(value is not None for value in self)

    def to_payload(self) -> dict:
        """Get the wire representation, omitting absent fields."""
        return {wire_name: getattr(self, field)
                for wire_name, field in WIRE_FIELDS
                if getattr(self, field) is not None}


WIRE_FIELDS = (
    ('flowId', 'flow_id'),
    ('flowBeginTime', 'flow_begin_time'),
    ('context', 'context'),
    ('entrypoint', 'entrypoint'),
    ('migration', 'migration'),
    ('service', 'service'),
    ('utmCampaign', 'utm_campaign'),
    ('utmContent', 'utm_content'),
    ('utmMedium', 'utm_medium'),
    ('utmSource', 'utm_source'),
    ('utmTerm', 'utm_term'),
)

ATTRIBUTION_FIELDS = ('utm_campaign', 'utm_content', 'utm_medium',
                      'utm_source', 'utm_term')


def _valid(field: str, value: Any) -> bool:
    if field == 'flow_id':
        return isinstance(value, str) and len(value) == FLOW_ID_LENGTH \
            and HEX_STRING.match(value) is not None
    if field == 'flow_begin_time':
        return isinstance(value, int) and not isinstance(value, bool) \
            and value > 0
    return isinstance(value, str)


class Credential(NamedTuple):
    """A bearer token issued by the account service (session, key fetch)."""

    token_id: TokenId
    """Opaque identifier of the token."""

    uid: Optional[TokenId] = None
    """The account that owns the token."""

    device_id: Optional[TokenId] = None
    """The device record attached to a session token, if any."""

    device_name: Optional[str] = None
    device_type: Optional[str] = None
    device_callback_url: Optional[str] = None
    device_callback_public_key: Optional[str] = None

    @property
    def key(self) -> str:
        """Cache key for data that lives as long as this token."""
        return to_hex(self.token_id)  # type: ignore

    @property
    def device(self) -> Optional['Device']:
        """The device record attached to this session token, if any."""
        if self.device_id is None:
            return None
        return Device(
            id=self.device_id,
            uid=self.uid,
            session_token_id=self.token_id,
            name=self.device_name,
            type=self.device_type,
            push_callback=self.device_callback_url,
            push_public_key=self.device_callback_public_key
        )


class Device(NamedTuple):
    """A device registered against an account."""

    id: Optional[TokenId] = None
    """Unique identifier for the device; ``None`` until first written."""

    uid: Optional[TokenId] = None
    session_token_id: Optional[TokenId] = None
    name: Optional[str] = None
    type: Optional[str] = None
    push_callback: Optional[str] = None
    push_public_key: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping) -> 'Device':
        """Read the device wire shape sent by a client."""
        return cls(
            id=payload.get('id'),
            name=payload.get('name'),
            type=payload.get('type'),
            push_callback=payload.get('pushCallback'),
            push_public_key=payload.get('pushPublicKey')
        )

    def to_payload(self) -> dict:
        """Get the wire representation, omitting absent fields."""
        data = {
            'id': to_hex(self.id),
            'name': self.name,
            'type': self.type,
            'pushCallback': self.push_callback,
            'pushPublicKey': self.push_public_key
        }
        return {key: value for key, value in data.items() if value is not None}


class Request(NamedTuple):
    """The parts of an inbound request that end up in activity events."""

    user_agent: str = ''
    payload: Optional[dict] = None
    do_not_track: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping,
                     payload: Optional[dict] = None) -> 'Request':
        """Build a request context from HTTP headers."""
        headers = {key.lower(): value for key, value in headers.items()}
        return cls(
            user_agent=headers.get('user-agent', ''),
            payload=payload,
            do_not_track=headers.get('dnt') == '1'
        )

    @property
    def metrics_context(self) -> Optional[MetricsContext]:
        """Correlation metadata sent with the request, if valid."""
        if not self.payload:
            return None
        return MetricsContext.from_payload(self.payload.get('metricsContext'))
