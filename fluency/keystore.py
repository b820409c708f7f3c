"""API key storage kept apart from the regular configuration file."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Optional

from .config import APP_DIR
from .errors import ConfigError

SECRETS_PATH = APP_DIR / "secrets.json"
KNOWN_SECRETS = ("openai", "groq")


class SecretStore:
    """Persist named secrets in a user-only readable JSON file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or SECRETS_PATH

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Failed to parse secrets file: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError("Secrets file must contain a JSON object")
        return {str(k): str(v) for k, v in payload.items()}

    def _save(self, secrets: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(secrets, indent=2))
        os.chmod(self.path, 0o600)

    def get(self, name: str) -> Optional[str]:
        value = self._load().get(name)
        return value or None

    def set(self, name: str, value: str) -> None:
        value = value.strip()
        if not value:
            self.delete(name)
            return
        secrets = self._load()
        secrets[name] = value
        self._save(secrets)

    def delete(self, name: str) -> None:
        secrets = self._load()
        if secrets.pop(name, None) is not None:
            self._save(secrets)
