"""Resolve a stable identifier for the current host."""

import logging
import socket
import subprocess
import sys
from pathlib import Path
from typing import Optional

MACHINE_ID_PATH = Path("/etc/machine-id")


class NodeIdentityResolver:
    """Return the first available of:

    - /etc/machine-id
    - IOPlatformUUID (macOS)
    - hostname
    """

    def __init__(
        self,
        machine_id_path: Path = MACHINE_ID_PATH,
        logger_obj: Optional[logging.Logger] = None
    ):
        self.machine_id_path = machine_id_path
        self.logger = logger_obj or logging.getLogger(__name__)

    def resolve(self) -> str:
        identity = self._from_machine_id() or self._from_ioreg() or socket.gethostname()
        self.logger.debug(f"Resolved node identity: {identity}")
        return identity

    def _from_machine_id(self) -> Optional[str]:
        try:
            value = self.machine_id_path.read_text().strip()
        except OSError:
            return None
        return value or None

    def _from_ioreg(self) -> Optional[str]:
        if sys.platform != "darwin":
            return None
        try:
            output = subprocess.run(
                ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
                capture_output=True,
                text=True,
                check=False,
            ).stdout
        except OSError as e:
            self.logger.debug(f"ioreg unavailable: {e}")
            return None
        for line in output.splitlines():
            if "IOPlatformUUID" in line:
                parts = line.split('"')
                if len(parts) >= 4 and parts[3]:
                    return parts[3]
        return None
