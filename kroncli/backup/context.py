import time
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from .errors import BackupTimeoutError
from .runner import ProcessRunner


@dataclass
class BackupContext:
    """
    Explicit per-run handle passed to the orchestrator and every connection.

    ``timeout`` is the per-backend budget in seconds; ``start_deadline`` turns
    it into an absolute monotonic deadline for one backend.
    """
    runner: ProcessRunner = field(default_factory=ProcessRunner)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger('kroncli.backup'))
    timeout: Optional[float] = None
    probe_timeout: float = 30.0
    deadline: Optional[float] = None

    def for_backend(self, backend: str) -> 'BackupContext':
        return replace(
            self,
            logger=self.logger.getChild(backend),
            deadline=None
        )

    def start_deadline(self):
        if self.timeout:
            self.deadline = time.monotonic() + self.timeout

    def remaining(self, cap: Optional[float] = None) -> Optional[float]:
        """
        Seconds left before the deadline, optionally capped.

        Raises:
            BackupTimeoutError: If the deadline has already passed
        """
        if self.deadline is None:
            return cap
        left = self.deadline - time.monotonic()
        if left <= 0:
            raise BackupTimeoutError(f"Deadline of {self.timeout:.0f}s exceeded")
        return min(left, cap) if cap is not None else left

    def check_deadline(self):
        self.remaining()
