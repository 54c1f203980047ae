"""
envoy - share one ssh-agent or gpg-agent between all of a user's shells.

Usage:
    eval $(envoy -p)            # POSIX shells
    envoy -f | source           # fish
    envoy -a ~/.ssh/id_work     # add a key
    envoy -u                    # unlock gpg-agent's keyring

Without an action flag envoy makes sure an agent is running, exports it to
its own environment and, when the agent was started just now, adds the
default keys with ssh-add.
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from envoy import config
from envoy.broker import BrokerClient
from envoy.environment import apply_to_process_environment, to_fish_exports, to_sh_exports
from envoy.errors import EnvoyError
from envoy.keys import add_keys, clear_agent, kill_agent, list_keys
from envoy.log import configure_logging
from envoy.protocol import AgentKind
from envoy.unlock import unlock

log = logging.getLogger("envoy.cli")

ACTION_NONE = "none"
ACTION_FORCE_ADD = "add"
ACTION_CLEAR = "clear"
ACTION_KILL = "kill"
ACTION_LIST = "list"
ACTION_UNLOCK = "unlock"
ACTION_SH_PRINT = "print"
ACTION_FISH_PRINT = "fish"

# Actions that only talk to an existing agent: never start one, never source.
PASSIVE_ACTIONS = (ACTION_CLEAR, ACTION_KILL)


class _UnlockPasswordAction(argparse.Action):
    """Select the unlock action and keep the password attached to it."""

    def __call__(self, parser, namespace, values, option_string=None):
        namespace.action = ACTION_UNLOCK
        namespace.password = values


def attach_unlock_password(argv: Sequence[str]) -> list:
    """Rewrite -uPASS and --unlock=PASS into the hidden --unlock-password option.

    Like getopt's optional arguments, the password must be attached: in
    "-u id_rsa" the word after -u is a key name, not a password.
    """
    rewritten = []
    for i, arg in enumerate(argv):
        if arg == "--":
            rewritten.extend(argv[i:])
            break
        if arg.startswith("--unlock="):
            arg = "--unlock-password=" + arg[len("--unlock="):]
        elif arg.startswith("-u") and len(arg) > 2:
            arg = "--unlock-password=" + arg[2:]
        rewritten.append(arg)
    return rewritten


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="envoy",
        description="Share one ssh-agent or gpg-agent between shells.",
    )
    parser.set_defaults(action=ACTION_NONE, password=None)

    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {config.VERSION}")
    parser.add_argument(
        "-a", "--add", dest="action", action="store_const", const=ACTION_FORCE_ADD,
        help="add private key identities",
    )
    parser.add_argument(
        "-k", "--clear", dest="action", action="store_const", const=ACTION_CLEAR,
        help="force identities to expire (gpg-agent only)",
    )
    parser.add_argument(
        "-K", "--kill", dest="action", action="store_const", const=ACTION_KILL,
        help="kill the running agent",
    )
    parser.add_argument(
        "-l", "--list", dest="action", action="store_const", const=ACTION_LIST,
        help="list fingerprints of all loaded identities",
    )
    parser.add_argument(
        "-u", "--unlock", dest="action", action="store_const", const=ACTION_UNLOCK,
        help="unlock the agent's keyring (gpg-agent only); -uPASS or --unlock=PASS skips the prompt",
    )
    parser.add_argument("--unlock-password", action=_UnlockPasswordAction, help=argparse.SUPPRESS)
    parser.add_argument(
        "-p", "--print", dest="action", action="store_const", const=ACTION_SH_PRINT,
        help="print out sh environmental arguments",
    )
    parser.add_argument(
        "-f", "--fish", dest="action", action="store_const", const=ACTION_FISH_PRINT,
        help="print out fish environmental arguments",
    )
    parser.add_argument(
        "-t", "--agent", metavar="AGENT",
        help="set the preferred agent to start (ssh-agent or gpg-agent)",
    )
    parser.add_argument("keys", nargs="*", metavar="key", help="keys to add")
    return parser


def run(args: argparse.Namespace, broker: Optional[BrokerClient] = None) -> int:
    """Carry out one parsed invocation. Delegating actions do not return."""
    kind = AgentKind.from_name(args.agent) if args.agent else AgentKind.DEFAULT
    source = args.action not in PASSIVE_ACTIONS

    broker = broker or BrokerClient()
    session = broker.request_session(kind, start=source)

    if session.stopped:
        return 0

    if source:
        apply_to_process_environment(session)

    if args.action == ACTION_SH_PRINT:
        sys.stdout.write(to_sh_exports(session))
    elif args.action == ACTION_FISH_PRINT:
        sys.stdout.write(to_fish_exports(session) + "\n")
    sys.stdout.flush()

    if args.action == ACTION_NONE:
        if session.first_run and not session.is_gpg:
            add_keys(args.keys)
    elif args.action == ACTION_FORCE_ADD:
        add_keys(args.keys)
    elif args.action == ACTION_CLEAR:
        clear_agent(session)
    elif args.action == ACTION_KILL:
        kill_agent(session)
    elif args.action == ACTION_LIST:
        list_keys()
    elif args.action == ACTION_UNLOCK:
        if not session.is_gpg:
            raise EnvoyError("only gpg-agent supports this operation")
        return unlock(session.control_path, args.password)

    return 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    if argv is None:
        argv = sys.argv[1:]
    return build_parser().parse_args(attach_unlock_password(list(argv)))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point."""
    configure_logging()

    args = parse_args(argv)
    log.debug("action=%s agent=%s keys=%s", args.action, args.agent, args.keys)

    try:
        return run(args)
    except EnvoyError as e:
        log.error("%s", e)
        return 1
    except KeyboardInterrupt:
        log.debug("interrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
