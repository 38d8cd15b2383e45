"""Environment references in job files.

Job files keep secrets and endpoints out of YAML by writing them as
``${NAME}`` or ``${NAME:-fallback}``. References are resolved once, after
the optional ``.env`` file is loaded and before pydantic validation.
A bare ``$`` is left alone so secret keys containing it survive.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

from datamold.errors import ConfigurationError

__all__ = ["load_env_file", "resolve_env_refs"]

ENV_REF_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """Load a .env file without overriding variables already set.

    An explicit ``path`` that does not exist is a configuration error;
    with no path, python-dotenv searches upwards for ``.env``.
    """
    if path is not None and not Path(path).is_file():
        raise ConfigurationError(
            f"Env file not found: {path}", field="env_file", value=str(path)
        )
    return load_dotenv(dotenv_path=path, override=False)


def _resolve_string(value: str, location: str) -> str:
    def replace(match: re.Match[str]) -> str:
        name, fallback = match.group(1), match.group(2)
        resolved = os.environ.get(name)
        if resolved is not None:
            return resolved
        if fallback is not None:
            return fallback
        raise ConfigurationError(
            f"Environment variable {name} is not set",
            field=location,
            value=match.group(0),
            suggestion=f"Export {name}, add it to the .env file, or write ${{{name}:-default}}.",
        )

    return ENV_REF_PATTERN.sub(replace, value)


def resolve_env_refs(data: Any, location: str = "") -> Any:
    """Return ``data`` with every ``${NAME}`` in its strings resolved.

    Raises:
        ConfigurationError: For an unset variable without a fallback;
            ``field`` is the dotted path of the offending value
    """
    if isinstance(data, str):
        return _resolve_string(data, location)
    if isinstance(data, dict):
        return {
            key: resolve_env_refs(value, f"{location}.{key}" if location else str(key))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [resolve_env_refs(item, f"{location}[{index}]") for index, item in enumerate(data)]
    return data
