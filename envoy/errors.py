"""Errors raised by the envoy client.

Every failure surfaces to the invoking shell as a non-zero exit with a
readable message; nothing here is retried internally.
"""

from typing import Optional


class EnvoyError(Exception):
    """Base class for all envoy client failures."""


class UnknownAgent(EnvoyError):
    """An agent name or kind that envoy does not know about."""

    def __init__(self, name):
        super().__init__(f"unknown agent: {name}")
        self.name = name


class TransportError(EnvoyError):
    """The broker could not be reached or sent a malformed reply."""


class AgentConnectionError(TransportError):
    """The gpg-agent control socket could not be reached or misbehaved."""


class Unauthorized(EnvoyError):
    """The broker refused to hand this user a session."""

    def __init__(self, message: str = "connection rejected, user is unauthorized to use this agent"):
        super().__init__(message)


class AgentStartFailed(EnvoyError):
    """The broker could not bring up an agent; details live in its own log."""

    def __init__(self, message: str = "agent failed to start, check envoyd's log"):
        super().__init__(message)


class UnlockRejected(EnvoyError):
    """gpg-agent refused a preset passphrase for one key."""

    def __init__(self, fingerprint: str, reason: Optional[str] = None):
        message = f"failed to unlock key '{fingerprint}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.fingerprint = fingerprint
        self.reason = reason


class DelegateLaunchFailed(EnvoyError):
    """An external program could not be executed in place of this process."""

    def __init__(self, program: str, cause: OSError):
        super().__init__(f"failed to launch {program}: {cause.strerror or cause}")
        self.program = program
        self.cause = cause


class PromptFailed(EnvoyError):
    """The password prompt could not change terminal mode or read a line."""
