"""
Broker client: obtain (or start) a shared agent session from envoyd.

The broker is treated as always-reachable infrastructure. Any failure to talk
to it is fatal and reported immediately; there is no retry and no fallback.
"""

import logging
from typing import Optional

from envoy import config
from envoy.errors import AgentStartFailed, Unauthorized
from envoy.protocol import (
    REPLY,
    AgentKind,
    AgentStatus,
    SessionDescriptor,
    decode_reply,
    encode_request,
)
from envoy.transport import describe_address, exchange, resolve_address

log = logging.getLogger("envoy.broker")


class BrokerClient:
    """Performs the single request/response round trip with envoyd."""

    def __init__(self, endpoint: Optional[str] = None, timeout: Optional[float] = config.TIMEOUT):
        self.address = resolve_address(endpoint)
        self.timeout = timeout

    def request_session(self, agent_kind=AgentKind.DEFAULT, start: bool = True) -> SessionDescriptor:
        """
        Fetch the session for agent_kind, asking the broker to start it if absent.

        Returns a descriptor for RUNNING, FIRSTRUN and STOPPED sessions; callers
        check descriptor.stopped and treat it as a clean no-op.

        Raises:
            UnknownAgent: agent_kind is not a recognized kind (before any I/O)
            TransportError: broker unreachable or reply malformed
            Unauthorized: the broker refused this user
            AgentStartFailed: the broker could not start the agent
        """
        kind = AgentKind.validate(agent_kind)
        log.debug(
            "requesting %s session from %s (start=%s)",
            kind.agent_name,
            describe_address(self.address),
            start,
        )

        payload = exchange(self.address, encode_request(kind, start), REPLY.size, self.timeout)
        descriptor = decode_reply(payload)
        return self._interpret(descriptor)

    def _interpret(self, descriptor: SessionDescriptor) -> SessionDescriptor:
        status = descriptor.status

        if status == AgentStatus.BADUSER:
            raise Unauthorized()
        if status == AgentStatus.FAILED:
            raise AgentStartFailed()

        if status == AgentStatus.STOPPED:
            log.debug("no session running and none started")
        elif status == AgentStatus.FIRSTRUN:
            log.info("started %s (pid %d)", descriptor.agent_kind.agent_name, descriptor.pid)
        else:
            log.debug("using running %s (pid %d)", descriptor.agent_kind.agent_name, descriptor.pid)

        return descriptor


def request_session(agent_kind=AgentKind.DEFAULT, start: bool = True, endpoint: Optional[str] = None) -> SessionDescriptor:
    """Convenience wrapper around BrokerClient for one-shot use."""
    return BrokerClient(endpoint).request_session(agent_kind, start)
