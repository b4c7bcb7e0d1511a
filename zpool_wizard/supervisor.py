"""Supervised execution of long-running commands"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class CommandResult:
    """Outcome of a supervised command"""

    cmd: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined output, stderr first since it carries the error text"""
        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


class Reporter:
    """Receives progress events; the base class ignores them"""

    def started(self, description: str) -> None:
        pass

    def progress(self, description: str) -> None:
        pass

    def finished(self, description: str, ok: bool) -> None:
        pass


class LoggingReporter(Reporter):
    """Reports progress events through a logger"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def started(self, description: str) -> None:
        self.logger.info(f"{description}...")

    def progress(self, description: str) -> None:
        self.logger.debug(f"Still running: {description}")

    def finished(self, description: str, ok: bool) -> None:
        if ok:
            self.logger.debug(f"Finished: {description}")
        else:
            self.logger.warning(f"Failed: {description}")


class CommandSupervisor:
    """Runs a command while polling it for liveness

    The caller blocks until the command exits. Local commands have no
    timeout; their exit status is returned as-is.
    """

    def __init__(self, reporter: Optional[Reporter] = None, poll_interval: float = 0.1,
                 logger: Optional[logging.Logger] = None):
        self.reporter = reporter or Reporter()
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)

    def run(self, cmd: List[str], description: str, interruptible: bool = True) -> CommandResult:
        """Run a command and wait for it

        Args:
            cmd: Command to execute as list of strings
            description: Human-readable label for progress events
            interruptible: When False, the command is started in its own session
                so a terminal interrupt does not reach it, and a KeyboardInterrupt
                is held back until it has exited; a pool mutation is never cut short

        Returns:
            CommandResult with the exit status and captured output

        Raises:
            KeyboardInterrupt: If interrupted (after the command exits when
                not interruptible)
        """
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        self.reporter.started(description)

        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                    universal_newlines=True, start_new_session=not interruptible)
        except OSError as e:
            self.reporter.finished(description, False)
            return CommandResult(cmd, 127, "", str(e))

        interrupted = False
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                self.reporter.progress(description)
            except KeyboardInterrupt:
                if interruptible:
                    self.logger.warning(f"Interrupted, stopping: {description}")
                    proc.kill()
                    proc.communicate()
                    self.reporter.finished(description, False)
                    raise
                interrupted = True
                self.logger.warning(f"Interrupt received, waiting for '{description}' to finish")

        result = CommandResult(cmd, proc.returncode, stdout or "", stderr or "")
        self.reporter.finished(description, result.ok)

        if interrupted:
            raise KeyboardInterrupt
        return result
