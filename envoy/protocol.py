"""
Broker wire protocol and session data model.

The broker (envoyd) and this client exchange exactly one fixed-size record in
each direction. The layout is a versioned contract between the two builds:

    request:  int32 agent_kind, bool start
    reply:    int32 pid, int32 status, int32 agent_kind,
              char sock[PATH_MAX], char gpg[PATH_MAX]

Integers are in native byte order with no padding; strings are NUL padded.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

from envoy.errors import TransportError, UnknownAgent

PATH_MAX = 4096

REQUEST = struct.Struct("=i?")
REPLY = struct.Struct(f"=iii{PATH_MAX}s{PATH_MAX}s")


class AgentKind(IntEnum):
    SSH_AGENT = 0
    GPG_AGENT = 1
    DEFAULT = 2

    @property
    def agent_name(self) -> str:
        return AGENT_NAMES.get(self, "default")

    @classmethod
    def from_name(cls, name: str) -> "AgentKind":
        """Look up a concrete agent by its program name ("ssh-agent", "gpg-agent")."""
        for kind, agent_name in AGENT_NAMES.items():
            if agent_name == name:
                return kind
        raise UnknownAgent(name)

    @classmethod
    def validate(cls, value) -> "AgentKind":
        """Coerce a requested kind, rejecting anything unrecognized."""
        if isinstance(value, bool):
            raise UnknownAgent(value)
        try:
            return cls(value)
        except ValueError:
            raise UnknownAgent(value) from None


AGENT_NAMES = {
    AgentKind.SSH_AGENT: "ssh-agent",
    AgentKind.GPG_AGENT: "gpg-agent",
}


class AgentStatus(IntEnum):
    """Session status, shared with the broker.

    RUNNING, FIRSTRUN and BADUSER keep their historical values; STOPPED and
    FAILED were appended after them.
    """

    RUNNING = 0
    FIRSTRUN = 1
    BADUSER = 2
    STOPPED = 3
    FAILED = 4


@dataclass(frozen=True)
class SessionDescriptor:
    """One agent session as reported by the broker."""

    pid: int
    status: AgentStatus
    socket_path: str
    control_path: str = ""
    agent_kind: AgentKind = AgentKind.SSH_AGENT

    @property
    def is_gpg(self) -> bool:
        return self.agent_kind == AgentKind.GPG_AGENT

    @property
    def first_run(self) -> bool:
        return self.status == AgentStatus.FIRSTRUN

    @property
    def stopped(self) -> bool:
        return self.status == AgentStatus.STOPPED


def encode_request(agent_kind: AgentKind, start: bool) -> bytes:
    return REQUEST.pack(int(agent_kind), bool(start))


def decode_request(payload: bytes) -> tuple[AgentKind, bool]:
    """Decode a request record; used by broker-side tooling and tests."""
    if len(payload) != REQUEST.size:
        raise TransportError(
            f"malformed request: expected {REQUEST.size} bytes, got {len(payload)}"
        )
    kind, start = REQUEST.unpack(payload)
    return AgentKind.validate(kind), start


def _pack_path(path: str) -> bytes:
    raw = path.encode("utf-8")
    if len(raw) >= PATH_MAX:
        raise ValueError(f"path too long for the wire format: {path[:64]}...")
    return raw


def _unpack_path(raw: bytes) -> str:
    try:
        return raw.split(b"\0", 1)[0].decode("utf-8")
    except UnicodeDecodeError as e:
        raise TransportError(f"malformed reply: undecodable socket path ({e})") from e


def encode_reply(descriptor: SessionDescriptor) -> bytes:
    return REPLY.pack(
        descriptor.pid,
        int(descriptor.status),
        int(descriptor.agent_kind),
        _pack_path(descriptor.socket_path),
        _pack_path(descriptor.control_path),
    )


def decode_reply(payload: bytes) -> SessionDescriptor:
    """Decode a broker reply into a SessionDescriptor.

    Raises:
        TransportError: on a short record, an unknown status or agent kind,
            or a live session without an authentication socket.
    """
    if len(payload) != REPLY.size:
        raise TransportError(
            f"malformed reply: expected {REPLY.size} bytes, got {len(payload)}"
        )

    pid, status, kind, sock, gpg = REPLY.unpack(payload)

    try:
        status = AgentStatus(status)
    except ValueError:
        raise TransportError(f"malformed reply: unknown status {status}") from None

    try:
        kind = AgentKind(kind)
    except ValueError:
        raise TransportError(f"malformed reply: unknown agent kind {kind}") from None

    descriptor = SessionDescriptor(
        pid=pid,
        status=status,
        socket_path=_unpack_path(sock),
        control_path=_unpack_path(gpg),
        agent_kind=kind,
    )

    if status in (AgentStatus.RUNNING, AgentStatus.FIRSTRUN) and not descriptor.socket_path:
        raise TransportError("malformed reply: live session without an auth socket")

    return descriptor
