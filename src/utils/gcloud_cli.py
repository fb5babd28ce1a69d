"""Thin wrapper around the gcloud command line."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Callable, Optional, Sequence


class GcloudCli:
    """Run ``gcloud`` subcommands with a fixed set of global flags.

    Calls block until the command exits; no timeout is imposed here.
    """

    def __init__(
        self,
        executable: str = "gcloud",
        global_options: Sequence[str] = (),
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        logger_obj: Optional[logging.Logger] = None,
    ) -> None:
        self.executable = executable
        self.global_options = tuple(global_options)
        self._runner = runner
        self.logger = logger_obj or logging.getLogger(__name__)

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    def command(self, *args: str) -> list[str]:
        return [self.executable, *args, *self.global_options]

    def run(self, *args: str) -> subprocess.CompletedProcess:
        """Run a gcloud command; OSError from a missing binary propagates."""
        cmd = self.command(*args)
        self.logger.debug(f"Running: {' '.join(cmd)}")
        # own session: a terminal Ctrl-C must not interrupt an in-flight transfer
        return self._runner(cmd, capture_output=True, text=True, check=False, start_new_session=True)

    def succeeded(self, *args: str) -> bool:
        """Run a command and report whether it exited 0, logging stderr on failure."""
        try:
            result = self.run(*args)
        except OSError as e:
            self.logger.error(f"Unable to run {self.executable}: {e}")
            return False
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self.logger.error(
                f"{self.executable} {' '.join(args[:3])} exited with status {result.returncode}: {stderr[-2000:]}"
            )
            return False
        return True
