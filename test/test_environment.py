"""Tests for shell export formatting and process environment projection."""

import os
import shlex
from unittest.mock import MagicMock

import pytest

from envoy.environment import (
    apply_to_process_environment,
    fish_quote,
    session_variables,
    to_fish_exports,
    to_sh_exports,
)
from envoy.protocol import AgentKind, AgentStatus

from conftest import make_session


def parse_sh_exports(text: str) -> dict:
    """Re-parse `export NAME='value'` lines the way sh would."""
    result = {}
    for line in text.splitlines():
        words = shlex.split(line)
        assert words[0] == "export"
        name, value = words[1].split("=", 1)
        result[name] = value
    return result


def parse_fish_exports(text: str) -> dict:
    """Re-parse `set -x NAME 'value';` statements; enough of fish quoting for the tests."""
    result = {}
    for statement in filter(None, text.split(";")):
        prefix, _, quoted = statement.partition(" '")
        name = prefix.split()[-1]
        body = quoted[:-1]
        value = ""
        i = 0
        while i < len(body):
            if body[i] == "\\" and i + 1 < len(body) and body[i + 1] in "\\'":
                value += body[i + 1]
                i += 2
            else:
                value += body[i]
                i += 1
        result[name] = value
    return result


class TestShellExports:
    def test_ssh_session_sh(self):
        text = to_sh_exports(make_session(pid=31337, socket_path="/tmp/ssh-x/agent.1"))
        assert text == (
            "export SSH_AUTH_SOCK='/tmp/ssh-x/agent.1'\n"
            "export SSH_AGENT_PID='31337'\n"
        )

    def test_gpg_session_sh_includes_agent_info(self):
        session = make_session(kind=AgentKind.GPG_AGENT, control_path="/run/g/S.gpg-agent:7:1")
        text = to_sh_exports(session)
        assert text.splitlines()[0] == "export GPG_AGENT_INFO='/run/g/S.gpg-agent:7:1'"

    def test_ssh_session_fish(self):
        text = to_fish_exports(make_session(pid=5, socket_path="/tmp/a"))
        assert text == "set -x SSH_AUTH_SOCK '/tmp/a';set -x SSH_AGENT_PID '5';"

    @pytest.mark.parametrize(
        "socket_path",
        ["/tmp/plain.sock", "/tmp/it's here/agent", "/tmp/back\\slash", "/tmp/$HOME `x`"],
    )
    def test_exports_reparse_to_session_values(self, socket_path):
        session = make_session(
            kind=AgentKind.GPG_AGENT,
            pid=808,
            socket_path=socket_path,
            control_path=socket_path + ".gpg",
        )
        expected = dict(session_variables(session))

        assert parse_sh_exports(to_sh_exports(session)) == expected
        assert parse_fish_exports(to_fish_exports(session)) == expected

    def test_formatting_is_deterministic(self):
        session = make_session(AgentStatus.FIRSTRUN)
        assert to_sh_exports(session) == to_sh_exports(session)

    def test_fish_quote(self):
        assert fish_quote("it's") == "'it\\'s'"


class TestApplyToProcessEnvironment:
    def test_ssh_session_sets_auth_sock_only(self):
        environ = {}
        connect = MagicMock()

        apply_to_process_environment(make_session(socket_path="/tmp/s"), environ, connect)

        assert environ == {"SSH_AUTH_SOCK": "/tmp/s"}
        connect.assert_not_called()

    def test_gpg_session_notifies_terminal_once(self):
        """One terminal notification, one assignment, no unlock or inventory calls."""
        environ = {}
        agent = MagicMock()
        connect = MagicMock()
        connect.return_value.__enter__.return_value = agent
        session = make_session(kind=AgentKind.GPG_AGENT, socket_path="/tmp/s")

        apply_to_process_environment(session, environ, connect)

        connect.assert_called_once_with(session.control_path)
        agent.update_tty.assert_called_once_with()
        agent.keyinfo.assert_not_called()
        agent.preset_passphrase.assert_not_called()
        assert environ == {"SSH_AUTH_SOCK": "/tmp/s"}

    @pytest.mark.gpg
    def test_gpg_session_against_agent(self, fake_gpg_agent, isolated_env):
        environ = {}
        session = make_session(kind=AgentKind.GPG_AGENT, control_path=fake_gpg_agent.path)

        apply_to_process_environment(session, environ)

        assert fake_gpg_agent.commands[0] == "RESET"
        assert "OPTION ttytype=xterm-256color" in fake_gpg_agent.commands
        assert "UPDATESTARTUPTTY" in fake_gpg_agent.commands
        assert not any(c.startswith(("KEYINFO", "PRESET")) for c in fake_gpg_agent.commands)
        assert environ["SSH_AUTH_SOCK"] == session.socket_path

    def test_defaults_to_os_environ(self, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        apply_to_process_environment(make_session(socket_path="/tmp/from-test"))

        assert os.environ["SSH_AUTH_SOCK"] == "/tmp/from-test"
        monkeypatch.delenv("SSH_AUTH_SOCK")
