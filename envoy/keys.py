"""
Hand work over to ssh-add, and signal the agent process.

add_keys() and list_keys() replace the current process: on success they never
return, and when the program cannot be executed they raise
DelegateLaunchFailed.
"""

import logging
import os
import pwd
import signal
from typing import NoReturn, Optional, Sequence

from envoy import config
from envoy.errors import DelegateLaunchFailed, EnvoyError
from envoy.protocol import SessionDescriptor

log = logging.getLogger("envoy.keys")


def home_directory() -> str:
    """Home directory from the password database, not $HOME."""
    try:
        entry = pwd.getpwuid(os.getuid())
    except KeyError as e:
        raise EnvoyError("failed to lookup passwd entry") from e
    if not entry.pw_dir:
        raise EnvoyError("failed to lookup passwd entry")
    return entry.pw_dir


def resolve_key_path(home: str, fragment: str) -> str:
    """Use fragment as-is if it exists, otherwise assume it's a key in ~/.ssh."""
    if os.path.exists(fragment):
        return fragment
    return f"{home}/.ssh/{fragment}"


def exec_program(argv: Sequence[str]) -> NoReturn:
    """Replace this process with argv[0]."""
    log.debug("exec %s", " ".join(argv))
    try:
        os.execv(argv[0], list(argv))
    except OSError as e:
        raise DelegateLaunchFailed(os.path.basename(argv[0]), e) from e


def add_keys(keys: Sequence[str], home: Optional[str] = None, ssh_add: Optional[str] = None) -> NoReturn:
    """Run ssh-add on the given keys; with no keys ssh-add picks its defaults."""
    if home is None:
        home = home_directory()
    argv = [ssh_add or config.SSH_ADD_BIN, "--"]
    argv.extend(resolve_key_path(home, key) for key in keys)
    exec_program(argv)


def list_keys(ssh_add: Optional[str] = None) -> NoReturn:
    """Run ssh-add -l to list the fingerprints of loaded identities."""
    exec_program([ssh_add or config.SSH_ADD_BIN, "-l"])


def _signal_agent(descriptor: SessionDescriptor, signum: int) -> None:
    # kill() with pid <= 0 targets process groups
    if descriptor.pid <= 0:
        raise EnvoyError(f"no agent process to signal (pid {descriptor.pid})")
    log.debug("sending %s to agent pid %d", signal.Signals(signum).name, descriptor.pid)
    try:
        os.kill(descriptor.pid, signum)
    except OSError as e:
        raise EnvoyError(f"failed to signal agent (pid {descriptor.pid}): {e.strerror or e}") from e


def clear_agent(descriptor: SessionDescriptor) -> None:
    """Make gpg-agent drop its cached passphrases."""
    if not descriptor.is_gpg:
        raise EnvoyError("only gpg-agent supports this operation")
    _signal_agent(descriptor, signal.SIGHUP)


def kill_agent(descriptor: SessionDescriptor) -> None:
    _signal_agent(descriptor, signal.SIGTERM)
