"""envoy: a client for sharing one ssh-agent or gpg-agent across shells."""

from envoy.config import VERSION as __version__
from envoy.broker import BrokerClient, request_session
from envoy.environment import apply_to_process_environment, to_fish_exports, to_sh_exports
from envoy.errors import (
    AgentConnectionError,
    AgentStartFailed,
    DelegateLaunchFailed,
    EnvoyError,
    PromptFailed,
    TransportError,
    Unauthorized,
    UnknownAgent,
    UnlockRejected,
)
from envoy.protocol import AgentKind, AgentStatus, SessionDescriptor
from envoy.unlock import unlock

__all__ = [
    "__version__",
    "AgentConnectionError",
    "AgentKind",
    "AgentStartFailed",
    "AgentStatus",
    "BrokerClient",
    "DelegateLaunchFailed",
    "EnvoyError",
    "PromptFailed",
    "SessionDescriptor",
    "TransportError",
    "Unauthorized",
    "UnknownAgent",
    "UnlockRejected",
    "apply_to_process_environment",
    "request_session",
    "to_fish_exports",
    "to_sh_exports",
    "unlock",
]
