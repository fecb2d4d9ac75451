"""Run external encoder tools and report a plain exit status."""

import logging
import signal
import subprocess
from typing import Optional, Sequence

logger = logging.getLogger("texture_pipeline.process")

# Distinguished statuses for failures that never produced an exit code.
STATUS_NOT_EXECUTABLE = 126
STATUS_NOT_FOUND = 127
STATUS_TIMEOUT = 124
STATUS_ABNORMAL = 256


def describe_signal(returncode: int) -> Optional[str]:
    """Return a readable signal name for a negative return code."""
    if returncode >= 0:
        return None
    sig_num = -returncode
    try:
        return f"{signal.Signals(sig_num).name} (signal {sig_num})"
    except ValueError:
        return f"signal {sig_num}"


class ProcessRunner:
    """Synchronous process execution with optional stream suppression.

    Both operations return an integer status and never raise for a tool
    that is missing, not executable, killed or timed out.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or None

    def probe(self, cmd: Sequence[str]) -> int:
        """Run *cmd* with stdout and stderr suppressed."""
        return self.run(cmd, ignore_stdout=True, ignore_stderr=True)

    def run(self, cmd: Sequence[str], ignore_stdout: bool = False,
            ignore_stderr: bool = False) -> int:
        """Run *cmd* to completion and return its exit status."""
        cmd = [str(part) for part in cmd]
        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL if ignore_stdout else None,
                stderr=subprocess.DEVNULL if ignore_stderr else None,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("Tool not found: %s", cmd[0])
            return STATUS_NOT_FOUND
        except PermissionError:
            logger.debug("Tool is not executable: %s", cmd[0])
            return STATUS_NOT_EXECUTABLE
        except subprocess.TimeoutExpired:
            logger.error("%s timed out after %ss", cmd[0], self.timeout)
            return STATUS_TIMEOUT
        except OSError as exc:
            logger.error("Failed to launch %s: %s", cmd[0], exc)
            return STATUS_ABNORMAL

        crash = describe_signal(proc.returncode)
        if crash:
            logger.error("%s terminated abnormally: %s", cmd[0], crash)
            return STATUS_ABNORMAL
        return proc.returncode
