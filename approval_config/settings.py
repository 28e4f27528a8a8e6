"""
Engine Settings (``approval_config.settings``).

Responsibility
--------------
Holds the deployment-level knobs of the approval engine: base currency
for rule matching, default escalation window, log level and the audit
database URL.

Architecture position
---------------------
**Config layer**.  ``get_settings`` is the only place that reads the
``APPROVAL_ENGINE_CONFIG`` environment variable; services receive an
``EngineSettings`` instance and never read the environment themselves.

Failure modes
-------------
* Named settings file missing  -> ``FileNotFoundError``.
* Unknown keys or bad values  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from approval_config.loader import load_yaml_file

CONFIG_ENV_VAR = "APPROVAL_ENGINE_CONFIG"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class EngineSettings:
    """Deployment settings with safe defaults."""

    base_currency: str = "USD"
    default_escalation_hours: int = 48
    log_level: str = "INFO"
    database_url: str = "sqlite:///:memory:"

    def __post_init__(self) -> None:
        if len(self.base_currency) != 3 or not self.base_currency.isalpha():
            raise ValueError(f"base_currency must be a 3-letter code, got {self.base_currency!r}")
        object.__setattr__(self, "base_currency", self.base_currency.upper())
        if self.default_escalation_hours < 1:
            raise ValueError(
                f"default_escalation_hours must be >= 1, got {self.default_escalation_hours}"
            )
        level = self.log_level.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {self.log_level!r}")
        object.__setattr__(self, "log_level", level)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineSettings:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings key(s): {', '.join(unknown)}")
        if "default_escalation_hours" in data:
            data = {**data, "default_escalation_hours": int(data["default_escalation_hours"])}
        return cls(**data)


def get_settings(path: Path | str | None = None) -> EngineSettings:
    """
    Load settings from ``path``, else from the file named by
    ``APPROVAL_ENGINE_CONFIG``, else return the defaults.

    The YAML file may nest the keys under an ``engine:`` section.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or None
    if path is None:
        return EngineSettings()

    data = load_yaml_file(Path(path))
    return EngineSettings.from_dict(data.get("engine", data))
