"""Environment-backed settings for the document assistant."""

import logging
import os
from typing import Any


class HelperConfig:
    """Reads settings from environment variables and hands out the process logger.

    Every getter follows the same contract: an unset or empty variable falls
    back to ``default``, and a missing variable without default is a
    ValueError. Keys are case-insensitive.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _lookup(self, key: str, default: Any) -> tuple[str, str | None]:
        """Return the normalised key and its stripped raw value (None if unset or empty)."""
        key = key.upper()
        raw = (os.getenv(key) or "").strip()
        if not raw and default is None:
            raise ValueError(f"Environment variable '{key}' is not set.")
        return key, raw or None

    def get_string_val(self, key: str, default: str | None = None) -> str:
        _, raw = self._lookup(key, default)
        return raw if raw is not None else default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int, or a float if the value contains a decimal point.

        Raises:
            ValueError: If the variable is missing without default or is not numeric.
        """
        key, raw = self._lookup(key, default)
        if raw is None:
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """"true", "1", "yes" and "on" are truthy, anything else is False."""
        _, raw = self._lookup(key, default)
        if raw is None:
            return default
        return raw.lower() in ("true", "1", "yes", "on")

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a separated list, optionally wrapped in brackets: ".pdf,.txt" or "[.pdf,.txt]".

        Args:
            key (str): Environment variable name.
            default (list | None): Fallback if the variable is unset.
            separator (str): Delimiter between elements.
            element_type (type): Type every element is cast to.

        Raises:
            ValueError: If the variable is missing without default, the brackets
                are unbalanced or an element cannot be cast.
        """
        key, raw = self._lookup(key, default)
        if raw is None:
            return default
        if raw.startswith("[") != raw.endswith("]"):
            raise ValueError(f"Environment variable '{key}' has unbalanced brackets: '{raw}'.")
        if raw.startswith("["):
            raw = raw[1:-1]
        try:
            return [element_type(part.strip()) for part in raw.split(separator) if part.strip()]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key}' has an element that is not {element_type.__name__}: {e}")

    def get_path_val(self, key: str, default: str | None = None) -> str:
        """Read a filesystem path. Relative paths are resolved against ROOT_DIR (or the working directory)."""
        path = os.path.expanduser(self.get_string_val(key, default=default))
        if os.path.isabs(path):
            return path
        root_dir = os.getenv("ROOT_DIR") or os.getcwd()
        return os.path.normpath(os.path.join(root_dir, path))

    def get_logger(self) -> logging.Logger:
        return self._logger
