"""Tests for the interactive navigator loop on a real pseudo-terminal."""

import os
import subprocess
import sys
import threading
import time

import pytest

pytestmark = pytest.mark.skipif(os.name != "posix", reason="needs a POSIX pty")


def _drain(fd):
    """Read navigator output so the pty buffer never fills up."""
    while True:
        try:
            if not os.read(fd, 4096):
                return
        except OSError:
            return


def _wait_until(check, timeout=20.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if check():
            return True
        time.sleep(0.05)
    return False


class TestTerminalRestore:
    def test_quit_leaves_terminal_cooked(self, workspace):
        import pty
        import termios

        master, slave = pty.openpty()
        before = termios.tcgetattr(slave)
        assert before[3] & termios.ECHO

        env = dict(os.environ, OMAKURE_SCRIPTS_DIR=str(workspace.root), TERM="xterm")
        env.pop("OMAKURE_DEBUG", None)
        proc = subprocess.Popen(
            [sys.executable, "-m", "omakure"],
            stdin=slave,
            stdout=slave,
            stderr=slave,
            env=env,
            close_fds=True,
        )
        reader = threading.Thread(target=_drain, args=(master,), daemon=True)
        reader.start()
        try:
            # readchar switches echo off while it waits for a key.
            assert _wait_until(lambda: not termios.tcgetattr(slave)[3] & termios.ECHO)
            os.write(master, b"q")
            assert proc.wait(timeout=20) == 0

            after = termios.tcgetattr(slave)
            assert after[3] & termios.ECHO
            assert after[3] & termios.ICANON
            assert after[3] & termios.ISIG
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            # With no slave left open the reader gets EIO and returns.
            os.close(slave)
            reader.join(5)
            os.close(master)
