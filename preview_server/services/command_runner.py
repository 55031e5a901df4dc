# preview_server/services/command_runner.py
"""
Command executor used for every toolchain call (npm install / npm run build).

The pipeline only sees `CommandRunner.run(cmd, cwd, timeout) -> CommandResult`,
so tests swap in a fake runner instead of a real toolchain.
"""

import asyncio
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger("preview-server.commands")

TIMEOUT_EXIT_STATUS = 124
NOT_FOUND_EXIT_STATUS = 127

# how long to wait for pipes to close once the process group is killed
KILL_GRACE_SECONDS = 5


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


def tail(text: str, max_bytes: int) -> str:
    b = (text or "").encode("utf-8", errors="replace")
    if len(b) > max_bytes:
        b = b[-max_bytes:]
    return b.decode("utf-8", errors="replace")


def _kill_group(process: asyncio.subprocess.Process) -> None:
    # npm runs scripts through sh, so vite/node are grandchildren in the same session
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class CommandRunner:
    def __init__(self, max_log_bytes: int = 12000, env: Optional[Dict[str, str]] = None):
        self.max_log_bytes = max_log_bytes
        self.env = env

    async def run(self, cmd: List[str], cwd: Path, timeout: Optional[float] = None) -> CommandResult:
        logger.info(f"$ (cwd={cwd}) {' '.join(cmd)}")
        start = time.time()

        env = os.environ.copy()
        env["CI"] = "false"
        if self.env:
            env.update(self.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {cmd[0]}")
            return CommandResult(stdout="", stderr=str(e), exit_status=NOT_FOUND_EXIT_STATUS)

        timed_out = False
        try:
            if timeout and timeout > 0:
                stdout_b, stderr_b = await asyncio.wait_for(process.communicate(), timeout=timeout)
            else:
                stdout_b, stderr_b = await process.communicate()
        except asyncio.TimeoutError:
            _kill_group(process)
            timed_out = True
            try:
                stdout_b, stderr_b = await asyncio.wait_for(process.communicate(), timeout=KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Output pipes still open {KILL_GRACE_SECONDS}s after kill: {' '.join(cmd)}")
                stdout_b, stderr_b = b"", b""
        except asyncio.CancelledError:
            _kill_group(process)
            await process.wait()
            raise

        stdout = tail(stdout_b.decode("utf-8", errors="replace"), self.max_log_bytes)
        stderr = tail(stderr_b.decode("utf-8", errors="replace"), self.max_log_bytes)

        if timed_out:
            stderr = f"{stderr}\n!! TIMEOUT after {timeout}s".lstrip("\n")
            exit_status = TIMEOUT_EXIT_STATUS
        else:
            exit_status = process.returncode if process.returncode is not None else 1

        logger.info(f"exit={exit_status} in {time.time() - start:.1f}s: {' '.join(cmd)}")
        return CommandResult(stdout=stdout, stderr=stderr, exit_status=exit_status, timed_out=timed_out)
