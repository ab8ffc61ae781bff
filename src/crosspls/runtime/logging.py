"""Process logging bootstrap for the crosspls entry points.

Two kinds of process log:

* ``cli`` - short-lived commands such as ``crosspls config``. They keep
  stderr for their own output, so the log only goes to the file.
* ``host`` - ``crosspls run``, which supervises the language server
  headlessly. There is no other place to watch it, so the log also goes
  to stderr.

Explicit arguments win over the ``logging`` config section, which wins
over the top-level ``logLevel`` and the mode defaults.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Literal, Optional

from ..core.config import Config, ConfigManager, LoggingConfig
from ..util.log import Log, LogFormat, LogLevel

LogMode = Literal["cli", "host"]

# Stderr sink default per mode
CONSOLE_BY_MODE: Dict[str, bool] = {"cli": False, "host": True}


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    file: bool
    dev_file: bool

    @classmethod
    def resolve(
        cls,
        config: Config,
        mode: LogMode,
        *,
        level: Optional[str] = None,
        format: Optional[str] = None,
        console: Optional[bool] = None,
        file: Optional[bool] = None,
        dev_file: Optional[bool] = None,
    ) -> "LogSettings":
        section = config.logging or LoggingConfig()

        def pick(explicit: Optional[bool], configured: Optional[bool], default: bool) -> bool:
            if explicit is not None:
                return explicit
            return default if configured is None else configured

        return cls(
            level=LogLevel.parse(level or section.level or config.log_level),
            format=LogFormat.parse(format or section.format),
            console=pick(console, section.console, CONSOLE_BY_MODE[mode]),
            file=pick(file, section.file, True),
            dev_file=pick(dev_file, section.dev_file, False),
        )


def bootstrap_logging(
    *,
    mode: LogMode,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
    dev_file: Optional[bool] = None,
) -> LogSettings:
    """Resolve log settings from config and arguments, then configure ``Log``.

    Raises:
        ConfigError: If the configuration cannot be loaded
    """
    config = asyncio.run(ConfigManager.get())
    settings = LogSettings.resolve(
        config,
        mode,
        level=level,
        format=format,
        console=console,
        file=file,
        dev_file=dev_file,
    )
    Log.configure(
        level=settings.level,
        format=settings.format,
        console=settings.console,
        file=settings.file,
        dev=settings.dev_file,
    )
    return settings
