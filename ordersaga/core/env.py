"""
Environment variable management with .env file support.

Loads ``.env`` files, reads typed values and substitutes ``${VAR}``
references in YAML configuration.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


class EnvManager:
    """
    Manages environment variables for ordersaga deployments.

    Example:
        >>> env = EnvManager()
        >>> env.load()  # Loads .env if it exists
        >>> timeout = env.get_float("ORDERSAGA_GATEWAY_TIMEOUT", 30.0)
    """

    def __init__(self, project_root: Path | str | None = None, auto_load: bool = False):
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self._loaded = False

        if auto_load:
            self.load()

    def load(self, env_file: str | Path | None = None, override: bool = False) -> bool:
        """
        Load environment variables from a .env file.

        Returns:
            True if the file existed and was loaded
        """
        env_file = self.project_root / ".env" if env_file is None else Path(env_file)

        if not env_file.exists():
            return False

        load_dotenv(env_file, override=override)
        self._loaded = True
        return True

    def get(self, key: str, default: str | None = None, required: bool = False) -> str | None:
        """
        Raises:
            ValueError: If required=True and the variable is not set
        """
        value = os.environ.get(key, default)

        if required and value is None:
            msg = f"Required environment variable not set: {key}"
            raise ValueError(msg)

        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = (self.get(key, "") or "").lower()
        if value in ("true", "1", "yes", "on"):
            return True
        if value in ("false", "0", "no", "off"):
            return False
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self.get(key, str(default)))
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        try:
            return float(self.get(key, str(default)))
        except (ValueError, TypeError):
            return default

    def get_list(self, key: str, default: list[str] | None = None) -> list[str]:
        """Comma separated list, e.g. ``CA,NY,TX``."""
        value = self.get(key)
        if not value:
            return list(default or [])
        return [part.strip() for part in value.split(",") if part.strip()]

    def substitute(self, text: str) -> str:
        """
        Substitute environment variables in text.

        Supports:
        - ${VAR} - variable substitution
        - ${VAR:-default} - with default value
        - ${VAR:?error} - required variable (raises error if not set)
        """
        pattern = r"\$\{([^}:]+)(?::([?-])([^}]*))?\}"

        def replace(match):
            var_name = match.group(1)
            operator = match.group(2)
            operand = match.group(3)

            value = os.environ.get(var_name)

            if operator == "-":
                return value if value is not None else operand
            if operator == "?":
                if value is None:
                    raise ValueError(operand or f"Required variable not set: {var_name}")
                return value
            return value if value is not None else f"${{{var_name}}}"

        return re.sub(pattern, replace, text)

    def substitute_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively substitute environment variables in dictionary values."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self.substitute(value)
            elif isinstance(value, dict):
                result[key] = self.substitute_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self.substitute(item) if isinstance(item, str)
                    else self.substitute_dict(item) if isinstance(item, dict)
                    else item
                    for item in value
                ]
            else:
                result[key] = value
        return result
