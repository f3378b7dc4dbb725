"""
Process runner for external dump and client programs.

Connections never call subprocess directly; they go through a ProcessRunner so
tests can substitute scripted results.
"""

import os
import shutil
import logging
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import ToolMissingError, ExecutionFailedError, BackupTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    args: List[str]
    returncode: int
    stdout: bytes = b''
    stderr: bytes = b''

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode('utf-8', errors='replace')

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode('utf-8', errors='replace')

    def check(self, description: str, backend: Optional[str] = None) -> 'ProcessResult':
        """
        Raise ExecutionFailedError unless the program exited 0.

        Args:
            description: What was being run, for the error message
            backend: Backend id to attach to the error
        """
        if self.returncode != 0:
            raise ExecutionFailedError(
                f"{description} failed with exit code {self.returncode}",
                backend=backend,
                returncode=self.returncode,
                stderr=self.stderr_text
            )
        return self


class ProcessRunner:
    """
    Runs external programs with captured output.

    Secrets are passed through ``env`` and merged over the current process
    environment; they never appear in ``args``.
    """

    def which(self, program: str) -> Optional[str]:
        return shutil.which(program)

    def require(self, program: str) -> str:
        """
        Resolve a program on PATH.

        Raises:
            ToolMissingError: If the program cannot be found
        """
        resolved = self.which(program)
        if not resolved:
            raise ToolMissingError(program)
        return resolved

    def run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        stdout_path: Optional[str] = None
    ) -> ProcessResult:
        """
        Run a program and wait for it.

        Args:
            args: Program name followed by its arguments
            env: Extra environment variables
            timeout: Seconds before the program is killed
            stdout_path: Stream stdout into this file instead of capturing it

        Returns:
            ProcessResult (nonzero exit codes are returned, not raised)

        Raises:
            ToolMissingError: If the program is not on PATH
            BackupTimeoutError: If the timeout expires
        """
        program = args[0]
        resolved = self.require(program)
        command = [resolved] + list(args[1:])

        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        logger.debug(f"Running {program} with {len(args) - 1} arguments")

        try:
            if stdout_path:
                with open(stdout_path, 'wb') as out:
                    completed = subprocess.run(
                        command,
                        stdout=out,
                        stderr=subprocess.PIPE,
                        env=process_env,
                        timeout=timeout,
                    )
                stdout = b''
            else:
                completed = subprocess.run(
                    command,
                    capture_output=True,
                    env=process_env,
                    timeout=timeout,
                )
                stdout = completed.stdout
        except FileNotFoundError:
            raise ToolMissingError(program)
        except subprocess.TimeoutExpired:
            raise BackupTimeoutError(f"{program} timed out after {timeout:.0f}s")

        return ProcessResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=stdout,
            stderr=completed.stderr or b''
        )
