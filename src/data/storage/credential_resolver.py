"""Locate a service-account key for the storage client.

Sources, first match wins:
1. the ``--credentials`` path
2. GOOGLE_APPLICATION_CREDENTIALS
3. GCS_CREDENTIALS_PATH / GOOGLE_APPLICATION_CREDENTIALS in ``./.env``

No match means the client uses application default credentials
(``gcloud auth application-default login``, GCE metadata server).
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any

DOTENV_KEYS = ("GCS_CREDENTIALS_PATH", "GOOGLE_APPLICATION_CREDENTIALS")


class GCSCredentialResolver:
    """Resolve a service-account info dict, or None for application default credentials."""

    @classmethod
    def resolve(
        cls,
        credentials_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ) -> Optional[Dict[str, Any]]:
        log = logger or logging.getLogger(__name__)

        candidates = (
            ("--credentials", Path(credentials_path).expanduser() if credentials_path else None),
            ("GOOGLE_APPLICATION_CREDENTIALS", cls._env_path()),
            (".env", cls._dotenv_path(log)),
        )
        for source, path in candidates:
            if path is None:
                continue
            info = cls._load_json(path, log)
            if info is not None:
                log.debug(f"Using service account key from {source} [{path}]")
                return info

        log.debug("No service account key configured - using application default credentials")
        return None

    @staticmethod
    def _env_path() -> Optional[Path]:
        value = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        return Path(value).expanduser() if value else None

    @classmethod
    def _dotenv_path(
        cls,
        logger: logging.Logger,
        dotenv_path: Path = Path(".env")
    ) -> Optional[Path]:
        """Key file named in a .env file; relative paths are relative to the .env file."""
        if not dotenv_path.is_file():
            return None
        try:
            values = cls._parse_dotenv(dotenv_path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.warning(f"Unable to read {dotenv_path}: {e}")
            return None

        for key in DOTENV_KEYS:
            if values.get(key):
                path = Path(values[key]).expanduser()
                return path if path.is_absolute() else dotenv_path.parent / path
        return None

    @staticmethod
    def _parse_dotenv(text: str) -> Dict[str, str]:
        values = {}
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            if line.startswith("export "):
                line = line[len("export "):]
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip().strip("'\"")
        return values

    @staticmethod
    def _load_json(path: Path, logger: logging.Logger) -> Optional[Dict[str, Any]]:
        if not path.is_file():
            logger.warning(f"Service account key not found: {path}")
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unable to parse service account key {path}: {e}")
            return None
