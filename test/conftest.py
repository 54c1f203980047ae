"""
envoy test fixtures

Provides in-process stand-ins for the two sockets the client talks to:
- fake_broker: envoyd on a unix socket, answering one record per connection
- fake_gpg_agent: gpg-agent's Assuan control socket

Both run a socketserver in a daemon thread and record what the client sent,
so tests exercise the real socket code end to end.
"""

import socketserver
import tempfile
import threading
from pathlib import Path
from typing import Generator

import pytest

from envoy.protocol import (
    REQUEST,
    AgentKind,
    AgentStatus,
    SessionDescriptor,
    decode_request,
    encode_reply,
)

# 40-hex-digit keygrips, as gpg-agent lists them
KEYGRIP_A = "A" * 40
KEYGRIP_B = "B" * 40
KEYGRIP_C = "C" * 40


# =============================================================================
# Utility Functions
# =============================================================================


def make_session(
    status: AgentStatus = AgentStatus.RUNNING,
    kind: AgentKind = AgentKind.SSH_AGENT,
    pid: int = 4242,
    socket_path: str = "/run/user/1000/envoy/ssh-agent.sock",
    control_path: str = "",
) -> SessionDescriptor:
    """Build a SessionDescriptor with sensible defaults."""
    if kind == AgentKind.GPG_AGENT and not control_path:
        control_path = "/run/user/1000/gnupg/S.gpg-agent:4242:1"
    return SessionDescriptor(
        pid=pid,
        status=status,
        socket_path=socket_path,
        control_path=control_path,
        agent_kind=kind,
    )


def _serve(server: socketserver.BaseServer) -> threading.Thread:
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def short_tmp() -> Generator[Path, None, None]:
    """A temp directory with a short path; AF_UNIX paths are capped near 108 bytes."""
    with tempfile.TemporaryDirectory(prefix="envoy-") as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Broker Fixtures
# =============================================================================


class FakeBroker:
    """Records requests and answers each with a canned reply."""

    def __init__(self, path: Path):
        self.path = str(path)
        self.requests: list = []
        self.reply: bytes = encode_reply(make_session())

    def reply_with(self, descriptor: SessionDescriptor) -> None:
        self.reply = encode_reply(descriptor)

    def reply_raw(self, payload: bytes) -> None:
        self.reply = payload


def _broker_handler(broker: FakeBroker):
    class BrokerHandler(socketserver.BaseRequestHandler):
        def handle(self):
            data = b""
            while len(data) < REQUEST.size:
                chunk = self.request.recv(REQUEST.size - len(data))
                if not chunk:
                    return
                data += chunk
            broker.requests.append(decode_request(data))
            if broker.reply:
                self.request.sendall(broker.reply)

    return BrokerHandler


@pytest.fixture
def fake_broker(short_tmp: Path) -> Generator[FakeBroker, None, None]:
    """Start a fake envoyd listening on a filesystem socket."""
    broker = FakeBroker(short_tmp / "envoy.sock")
    server = socketserver.ThreadingUnixStreamServer(broker.path, _broker_handler(broker))
    server.daemon_threads = True
    _serve(server)
    yield broker
    server.shutdown()
    server.server_close()


# =============================================================================
# gpg-agent Fixtures
# =============================================================================


class FakeGpgAgent:
    """Minimal Assuan server with a fixed set of keys.

    Keys listed in `reject` fail PRESET_PASSPHRASE the way gpg-agent reports
    a bad passphrase.
    """

    def __init__(self, path: Path):
        self.path = str(path)
        self.keys: list = [KEYGRIP_A, KEYGRIP_B, KEYGRIP_C]
        self.reject: set = set()
        self.commands: list = []
        self.greeting = "OK Pleased to meet you"

    @property
    def presets(self) -> list:
        """Keygrips PRESET_PASSPHRASE was attempted for, in order."""
        return [c.split()[1] for c in self.commands if c.startswith("PRESET_PASSPHRASE ")]

    def respond(self, line: str) -> list:
        self.commands.append(line)
        parts = line.split()
        command = parts[0] if parts else ""

        if command == "KEYINFO":
            return [f"S KEYINFO {grip} D - - - P - - -" for grip in self.keys] + ["OK"]
        if command == "PRESET_PASSPHRASE":
            if parts[1] in self.reject:
                return ["ERR 67108875 Bad passphrase <GPG Agent>"]
            return ["OK"]
        if command == "BYE":
            return ["OK closing connection"]
        return ["OK"]


def _gpg_agent_handler(agent: FakeGpgAgent):
    class AssuanHandler(socketserver.StreamRequestHandler):
        def handle(self):
            self.wfile.write((agent.greeting + "\n").encode())
            while True:
                raw = self.rfile.readline()
                if not raw:
                    return
                line = raw.decode().rstrip("\n")
                for reply in agent.respond(line):
                    self.wfile.write((reply + "\n").encode())
                self.wfile.flush()
                if line == "BYE":
                    return

    return AssuanHandler


@pytest.fixture
def fake_gpg_agent(short_tmp: Path) -> Generator[FakeGpgAgent, None, None]:
    """Start a fake gpg-agent control socket."""
    agent = FakeGpgAgent(short_tmp / "S.gpg-agent")
    server = socketserver.ThreadingUnixStreamServer(agent.path, _gpg_agent_handler(agent))
    server.daemon_threads = True
    _serve(server)
    yield agent
    server.shutdown()
    server.server_close()


@pytest.fixture
def isolated_env(monkeypatch) -> None:
    """Strip agent variables from the environment for the duration of a test."""
    for name in ("SSH_AUTH_SOCK", "SSH_AGENT_PID", "GPG_AGENT_INFO", "DISPLAY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TERM", "xterm-256color")


# =============================================================================
# Marker Helpers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "broker: tests against the fake broker socket")
    config.addinivalue_line("markers", "gpg: tests against the fake gpg-agent socket")
    config.addinivalue_line("markers", "cli: end-to-end command line tests")
