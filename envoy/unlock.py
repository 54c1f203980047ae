"""
Unlock every key cached by gpg-agent with one passphrase.

All keys in the agent are expected to share the passphrase the user types.
The first rejection stops the batch: a wrong passphrase would fail for every
remaining key, and some agents lock keys out after repeated failures.
"""

import logging
from typing import Callable, Optional

from envoy.assuan import GpgAgentConnection
from envoy.errors import UnlockRejected
from envoy.prompt import read_password

log = logging.getLogger("envoy.unlock")


def preset_all(agent: GpgAgentConnection, passphrase: str) -> int:
    """Preset passphrase for every key the agent lists, stopping at the first failure.

    Returns the number of keys unlocked.

    Raises:
        UnlockRejected: naming the first key the agent refused.
    """
    fingerprints = agent.keyinfo()
    log.debug("agent lists %d key(s)", len(fingerprints))

    for record in fingerprints:
        response = agent.preset_passphrase(record.fingerprint, passphrase)
        if not response.ok:
            raise UnlockRejected(record.fingerprint, response.message or None)
        log.debug("unlocked %s", record.fingerprint)

    return len(fingerprints)


def unlock(
    control_path: str,
    passphrase: Optional[str] = None,
    connect: Callable[[str], GpgAgentConnection] = GpgAgentConnection.open,
    prompt: Optional[Callable[[], str]] = None,
) -> int:
    """
    Unlock the agent behind control_path.

    Prompts for the passphrase when none is given. Returns 0 when every key
    was unlocked and 1 when one was rejected; the rejected key is reported
    as a warning.

    Raises:
        AgentConnectionError: the control socket could not be used
        PromptFailed: the passphrase could not be read
    """
    with connect(control_path) as agent:
        if passphrase is None:
            passphrase = (prompt or read_password)()

        try:
            count = preset_all(agent, passphrase)
        except UnlockRejected as e:
            log.warning("%s", e)
            return 1

    log.info("unlocked %d key(s)", count)
    return 0
