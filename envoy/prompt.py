"""
Password prompt with terminal echo disabled.

The terminal mode in effect before the first prompt is saved and an atexit
hook restoring it is registered once, so a normal interpreter exit never
leaves the terminal without echo. A process killed by a signal skips atexit
and may still leave echo off.
"""

import atexit
import logging
import sys
import termios
from contextlib import contextmanager
from typing import Optional

from envoy.errors import PromptFailed

log = logging.getLogger("envoy.prompt")

# (fd, attributes) captured before the first echo change.
_saved_mode: Optional[tuple] = None


def _restore_saved_mode() -> None:
    if _saved_mode is None:
        return
    fd, attrs = _saved_mode
    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, attrs)
    except (termios.error, OSError) as e:
        log.debug("could not restore terminal mode at exit: %s", e)


def _remember_mode(fd: int, attrs: list) -> None:
    global _saved_mode
    if _saved_mode is None:
        _saved_mode = (fd, attrs)
        atexit.register(_restore_saved_mode)


@contextmanager
def echo_disabled(fd: int):
    """Disable echo on fd for the duration of the block, then restore it."""
    try:
        old = termios.tcgetattr(fd)
    except (termios.error, OSError) as e:
        raise PromptFailed("failed to get terminal attributes") from e

    _remember_mode(fd, old)

    new = list(old)
    new[6] = list(old[6])
    new[3] &= ~termios.ECHO
    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, new)
    except (termios.error, OSError) as e:
        raise PromptFailed("failed to set terminal attributes") from e

    try:
        yield
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSAFLUSH, old)
        except (termios.error, OSError) as e:
            log.warning("failed to restore terminal attributes: %s", e)


def strip_line_terminator(line: str) -> str:
    """Remove exactly one trailing line terminator."""
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def read_password(stdin=None, stdout=None, prompt: str = "Password: ") -> str:
    """Prompt for a password on the terminal without echoing it.

    Raises:
        PromptFailed: the terminal mode could not be changed, the line could
            not be read or decoded, or input ended before a line was read.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    stdout.write(prompt)
    stdout.flush()

    with echo_disabled(stdin.fileno()):
        try:
            line = stdin.readline()
        except (OSError, ValueError) as e:
            raise PromptFailed("failed to read password") from e

    stdout.write("\n")
    stdout.flush()

    if not line:
        raise PromptFailed("failed to read password")
    return strip_line_terminator(line)
