"""
Environment variable management with .env file support.

Configuration values are read from ``PHARMFLOW_*`` variables; a ``.env``
file in the project root is loaded first when present.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([?-])([^}]*))?\}")


class EnvManager:
    """
    Reads typed values from the environment.

    Example:
        >>> env = EnvManager()
        >>> env.get_int("PHARMFLOW_RETURN_TO_STOCK_DAYS", 10)
        10
    """

    def __init__(self, project_root: Path | str | None = None, auto_load: bool = True):
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
        env_path = self.project_root / ".env" if env_file is None else Path(env_file)
        if not env_path.exists():
            return False

        load_dotenv(env_path, override=override)
        self._loaded = True
        return True

    def get(self, key: str, default: str | None = None, required: bool = False) -> str | None:
        """
        Get an environment variable value.

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
            return int(self.get(key, str(default)))  # type: ignore[arg-type]
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        try:
            return float(self.get(key, str(default)))  # type: ignore[arg-type]
        except (ValueError, TypeError):
            return default

    def substitute(self, text: str) -> str:
        """
        Substitute ``${VAR}``, ``${VAR:-default}`` and ``${VAR:?error}`` references.

        Raises:
            ValueError: For ``${VAR:?error}`` when VAR is unset
        """

        def replace(match: re.Match) -> str:
            name, operator, operand = match.group(1), match.group(2), match.group(3)
            value = os.environ.get(name)

            if operator == "-":
                return value if value is not None else operand
            if operator == "?":
                if value is None:
                    raise ValueError(operand or f"Required variable not set: {name}")
                return value
            return value if value is not None else match.group(0)

        return _VAR_PATTERN.sub(replace, text)

    def substitute_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively substitute variables in string values."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self.substitute(value)
            elif isinstance(value, dict):
                result[key] = self.substitute_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self.substitute(item)
                    if isinstance(item, str)
                    else self.substitute_dict(item)
                    if isinstance(item, dict)
                    else item
                    for item in value
                ]
            else:
                result[key] = value
        return result


_env: EnvManager | None = None


def get_env() -> EnvManager:
    """Shared EnvManager (does not auto-load; call load() explicitly)."""
    global _env
    if _env is None:
        _env = EnvManager(auto_load=False)
    return _env
