"""
Assuan client for the gpg-agent control socket.

Talks to gpg-agent directly, bypassing the broker: only a user with access to
the control socket can notify it of a terminal or preset passphrases.

Protocol summary:
    client -> agent:  one command per line
    agent  -> client: any number of "D <data>", "S <status>", "# comment"
                      or "INQUIRE <what>" lines, terminated by either
                      "OK [text]" or "ERR <code> <description>"

Data lines are percent-encoded (%, CR and LF at minimum).
"""

import logging
import os
import socket
import sys
from dataclasses import dataclass, field
from typing import Optional

from envoy.errors import AgentConnectionError
from envoy.transport import connect

log = logging.getLogger("envoy.assuan")

# Assuan caps a line at 1000 bytes including the newline.
MAX_LINE = 1000

_HEX = b"0123456789abcdefABCDEF"


def percent_encode(data: str) -> str:
    """Percent-encode %, CR and LF for a data line."""
    encoded = ""
    for c in data:
        if c == "%":
            encoded += "%25"
        elif c == "\r":
            encoded += "%0D"
        elif c == "\n":
            encoded += "%0A"
        else:
            encoded += c
    return encoded


def percent_decode(encoded: str) -> str:
    """Decode a percent-encoded data line."""
    result = bytearray()
    i = 0
    raw = encoded.encode("utf-8")
    while i < len(raw):
        digits = raw[i + 1 : i + 3]
        if raw[i] == ord("%") and len(digits) == 2 and all(c in _HEX for c in digits):
            result.append(int(digits, 16))
            i += 3
        else:
            result.append(raw[i])
            i += 1
    return result.decode("utf-8", errors="replace")


def hex_passphrase(passphrase: str) -> str:
    """PRESET_PASSPHRASE takes the passphrase as uppercase hex."""
    return passphrase.encode("utf-8").hex().upper()


@dataclass
class AssuanResponse:
    """Everything the agent sent back for one command."""

    ok: bool
    message: str = ""
    data: str = ""
    status: list = field(default_factory=list)
    error_code: int = 0

    def status_lines(self, keyword: str) -> list:
        """Return the arguments of every status line with the given keyword."""
        prefix = keyword + " "
        return [line[len(prefix):] for line in self.status if line.startswith(prefix)]


@dataclass(frozen=True)
class FingerprintRecord:
    """One key known to gpg-agent, from a KEYINFO status line.

    The line looks like:
        KEYINFO <keygrip> <type> <serialno> <idstr> <cached> <protection> ...
    Only the keygrip is kept; every listed key gets the same passphrase.
    """

    fingerprint: str

    @classmethod
    def parse(cls, line: str) -> Optional["FingerprintRecord"]:
        fields = line.split()
        if not fields:
            return None
        return cls(fingerprint=fields[0].upper())


def control_socket_path(control_path: str) -> str:
    """Strip the ":pid:protocol" suffix a GPG_AGENT_INFO value may carry."""
    return control_path.split(":", 1)[0]


class GpgAgentConnection:
    """
    One Assuan session with gpg-agent.

    Use as a context manager; leaving the block sends BYE and closes the
    socket whether or not the work inside succeeded.
    """

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._closed = False

    @classmethod
    def open(cls, control_path: str, timeout: Optional[float] = None) -> "GpgAgentConnection":
        """Connect to control_path and consume the agent's greeting."""
        if not control_path:
            raise AgentConnectionError("failed to open connection to gpg-agent: no control socket")

        path = control_socket_path(control_path)
        sock = connect(path, timeout, error=AgentConnectionError)
        conn = cls(sock)
        try:
            greeting = conn._read_line()
        except AgentConnectionError:
            conn._shutdown()
            raise
        if not greeting.startswith("OK"):
            conn._shutdown()
            raise AgentConnectionError(f"unexpected greeting from gpg-agent: {greeting!r}")
        log.debug("gpg-agent greeting: %s", greeting)
        return conn

    def __enter__(self) -> "GpgAgentConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _send(self, line: str, redacted: Optional[str] = None) -> None:
        log.debug("> %s", redacted or line)
        payload = (line + "\n").encode("utf-8")
        if len(payload) > MAX_LINE:
            raise AgentConnectionError(f"assuan line too long ({len(payload)} bytes)")
        try:
            self._sock.sendall(payload)
        except OSError as e:
            raise AgentConnectionError(f"lost connection to gpg-agent: {e.strerror or e}") from e

    def _read_line(self) -> str:
        try:
            raw = self._reader.readline(MAX_LINE + 1)
        except OSError as e:
            raise AgentConnectionError(f"lost connection to gpg-agent: {e.strerror or e}") from e
        if not raw:
            raise AgentConnectionError("gpg-agent closed the connection")
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        log.debug("< %s", line)
        return line

    def transact(self, command: str, redacted: Optional[str] = None) -> AssuanResponse:
        """Send one command and collect lines up to its OK or ERR."""
        self._send(command, redacted)

        data = []
        status = []
        while True:
            line = self._read_line()
            if line == "OK" or line.startswith("OK "):
                return AssuanResponse(True, line[3:], "".join(data), status)
            if line.startswith("ERR "):
                parts = line.split(None, 2)
                try:
                    code = int(parts[1])
                except (IndexError, ValueError):
                    code = 0
                message = parts[2] if len(parts) > 2 else ""
                return AssuanResponse(False, message, "".join(data), status, code)
            if line.startswith("D "):
                data.append(percent_decode(line[2:]))
            elif line.startswith("S "):
                status.append(line[2:])
            elif line.startswith("INQUIRE "):
                # Nothing here answers inquiries; cancel so the agent replies ERR.
                self._send("CAN")
            elif line.startswith("#") or not line:
                continue
            else:
                raise AgentConnectionError(f"unexpected line from gpg-agent: {line!r}")

    def update_tty(self, tty: Optional[str] = None, term: Optional[str] = None, display: Optional[str] = None) -> bool:
        """Tell the agent which terminal to prompt on.

        Without this, pinentry pops up wherever the agent was first started
        rather than on the current terminal.
        """
        if tty is None:
            tty = _current_tty()
        if term is None:
            term = os.environ.get("TERM")
        if display is None:
            display = os.environ.get("DISPLAY")

        commands = ["RESET"]
        if tty:
            commands.append(f"OPTION ttyname={tty}")
        if term:
            commands.append(f"OPTION ttytype={term}")
        if display:
            commands.append(f"OPTION display={display}")
        commands.append("UPDATESTARTUPTTY")

        ok = True
        for command in commands:
            response = self.transact(command)
            if not response.ok:
                log.warning("gpg-agent rejected %s: %s", command, response.message)
                ok = False
        return ok

    def keyinfo(self) -> tuple:
        """Return the keys the agent knows about, in the agent's order."""
        response = self.transact("KEYINFO --list")
        if not response.ok:
            raise AgentConnectionError(f"failed to list keys: {response.message}")

        records = []
        for line in response.status_lines("KEYINFO"):
            record = FingerprintRecord.parse(line)
            if record:
                records.append(record)
        return tuple(records)

    def preset_passphrase(self, fingerprint: str, passphrase: str, timeout: int = -1) -> AssuanResponse:
        """Inject a passphrase into the agent's cache for one keygrip.

        Requires allow-preset-passphrase in gpg-agent.conf.
        """
        command = f"PRESET_PASSPHRASE {fingerprint} {timeout} {hex_passphrase(passphrase)}"
        return self.transact(command, redacted=f"PRESET_PASSPHRASE {fingerprint} {timeout} [redacted]")

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.transact("BYE")
        except AgentConnectionError as e:
            log.debug("BYE failed: %s", e)
        finally:
            self._shutdown()

    def _shutdown(self) -> None:
        self._closed = True
        self._reader.close()
        self._sock.close()


def _current_tty() -> Optional[str]:
    try:
        return os.ttyname(sys.stdin.fileno())
    except (OSError, ValueError, AttributeError):
        return None
