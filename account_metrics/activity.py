"""
Activity events for the account lifecycle.

Requests that issue credentials (account creation, login, password reset)
cache the client's metrics context against each credential they hand out.
Requests that consume a credential (e.g. fetching keys) log their activity
event with the cached context and then drop it.
"""

from typing import Any, Optional

from .context.propagator import MetricsContextPropagator
from .domain import Credential, MetricsContext, Request, to_hex
from .flow import FlowValidator
from .log import MetricsLog

ACCOUNT_CREATED = 'account.created'
ACCOUNT_LOGIN = 'account.login'
ACCOUNT_RESET = 'account.reset'
ACCOUNT_KEYFETCH = 'account.keyfetch'
ACCOUNT_VERIFIED = 'account.verified'
ACCOUNT_DELETED = 'account.deleted'


class AccountActivity(object):
    """Emits account activity events and keeps metrics context in step."""

    def __init__(self, log: MetricsLog,
                 metrics_context: MetricsContextPropagator,
                 flow_validator: Optional[FlowValidator] = None) -> None:
        self.log = log
        self.metrics_context = metrics_context
        self.flow_validator = flow_validator

    def inbound_context(self, request: Request) -> Optional[MetricsContext]:
        """
        Get the metrics context sent with ``request``, if it can be trusted.

        Context with a forged or stale flow id is dropped when a flow
        validator is configured.
        """
        metadata = request.metrics_context
        if metadata is None or self.flow_validator is None:
            return metadata
        if metadata.flow_id is None:
            return metadata
        if not self.flow_validator.validate(metadata, request.user_agent):
            return None
        return metadata

    async def credentials_issued(self, event: str, request: Request,
                                 uid: Any, *tokens: Credential) -> dict:
        """
        Log ``event`` and cache the request's metrics context for ``tokens``.

        Parameters
        ----------
        event : str
            E.g. :const:`ACCOUNT_LOGIN`.
        request : :class:`.Request`
        uid : bytes or str
            The account for which the tokens were issued.
        tokens : :class:`.Credential`
            Every credential issued by the request.

        Returns
        -------
        dict
            The activity event data.

        """
        metadata = self.inbound_context(request)
        data = await self.metrics_context.copy(
            {'uid': to_hex(uid)}, metadata, None, request.do_not_track
        )
        self.log.activity_event(event, request, data)
        for token in tokens:
            await self.metrics_context.save(token, metadata,
                                            request.do_not_track)
        return data

    async def credential_consumed(self, event: str, request: Request,
                                  credential: Credential) -> dict:
        """Log ``event`` for a spent credential and forget its context."""
        data = await self.metrics_context.copy(
            {'uid': to_hex(credential.uid)}, self.inbound_context(request),
            credential, request.do_not_track
        )
        self.log.activity_event(event, request, data)
        await self.metrics_context.remove(credential)
        return data

    async def account_verified(self, request: Request, uid: Any,
                               credential: Optional[Credential] = None) \
            -> dict:
        """Log that the account's primary email address was verified."""
        data = await self.metrics_context.copy(
            {'uid': to_hex(uid)}, self.inbound_context(request), credential,
            request.do_not_track
        )
        self.log.activity_event(ACCOUNT_VERIFIED, request, data)
        return data

    async def account_deleted(self, request: Request, uid: Any,
                              *credentials: Credential) -> None:
        """Log the deletion of an account and drop all its cached context."""
        self.log.activity_event(ACCOUNT_DELETED, request,
                                {'uid': to_hex(uid)})
        for credential in credentials:
            await self.metrics_context.remove(credential)
