"""Project a session into shell exports or the current process environment."""

import logging
import os
from typing import Callable, MutableMapping, Optional

from envoy.assuan import GpgAgentConnection
from envoy.protocol import SessionDescriptor

log = logging.getLogger("envoy.environment")


def session_variables(descriptor: SessionDescriptor) -> list:
    """Return (name, value) pairs a shell needs to use the session."""
    variables = []
    if descriptor.is_gpg:
        variables.append(("GPG_AGENT_INFO", descriptor.control_path))
    variables.append(("SSH_AUTH_SOCK", descriptor.socket_path))
    variables.append(("SSH_AGENT_PID", str(descriptor.pid)))
    return variables


def sh_quote(value: str) -> str:
    """Single-quote for POSIX sh; an embedded quote becomes '\\''."""
    return "'" + value.replace("'", "'\\''") + "'"


def fish_quote(value: str) -> str:
    """Single-quote for fish, which escapes \\ and ' inside quotes."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def to_sh_exports(descriptor: SessionDescriptor) -> str:
    return "".join(
        f"export {name}={sh_quote(value)}\n" for name, value in session_variables(descriptor)
    )


def to_fish_exports(descriptor: SessionDescriptor) -> str:
    return "".join(
        f"set -x {name} {fish_quote(value)};" for name, value in session_variables(descriptor)
    )


def apply_to_process_environment(
    descriptor: SessionDescriptor,
    environ: Optional[MutableMapping] = None,
    connect: Callable[[str], GpgAgentConnection] = GpgAgentConnection.open,
) -> None:
    """Make the session visible to programs this process runs or execs.

    For gpg-agent the agent is also told about the current terminal so its
    passphrase prompts show up here.
    """
    if environ is None:
        environ = os.environ

    if descriptor.is_gpg:
        with connect(descriptor.control_path) as agent:
            agent.update_tty()

    environ["SSH_AUTH_SOCK"] = descriptor.socket_path
    log.debug("SSH_AUTH_SOCK=%s", descriptor.socket_path)
