# -*- codeing = utf-8 -*-
"""Settings and logging configuration for the reachability monitor."""

import configparser
import logging
import os
import re
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Mapping, Optional, Tuple, TypeVar, Union

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

PING_SECTION = "Ping"
LOGGING_SECTION = "Logging"

DEFAULT_HOST = "8.8.8.8"
DEFAULT_MODE = "ICMP"
DEFAULT_INTERVAL = 1.0
DEFAULT_TIMEOUT = 5.0

PING_ENV_PREFIX = "PING_"
PING_ENV_SUFFIXES = {
    "host": "HOST",
    "mode": "MODE",
    "interval": "INTERVAL",
    "schedule": "SCHEDULE",
    "timeout": "TIMEOUT",
    "port": "PORT",
}
PING_ENV_MAP = {
    key: f"{PING_ENV_PREFIX}{suffix}"
    for key, suffix in PING_ENV_SUFFIXES.items()
}
CONFIG_PATH_ENV = "REACHABILITY_CONFIG"
HOME_DIR_ENV = "REACHABILITY_HOME"
_BOOL_TRUE_VALUES = {"1", "true", "yes", "on"}
_BOOL_FALSE_VALUES = {"0", "false", "no", "off"}

_LOG_HANDLER_FLAG = "_reachability_managed"
_LOG_HANDLER_KIND = "_reachability_kind"
_LOG_HANDLER_FILE = "file"
_LOG_HANDLER_CONSOLE = "console"
_DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DEFAULT_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
_DEFAULT_LOG_FILENAME = "reachability.log"
_DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
_DEFAULT_LOG_BACKUP_COUNT = 5
_DEFAULT_LOG_DIRECTORY_NAME = "Log"

APPLICATION_HOME_NAME = "reachability_home"
DEFAULT_APPLICATION_HOME = Path.home() / f".{APPLICATION_HOME_NAME}"
DEFAULT_CONFIG_NAME = "config.ini"


@dataclass(frozen=True)
class PingSettings:
    """Describe the configuration of one reachability loop.

    ``schedule`` wins over ``interval`` when both are present.
    """

    host: str = DEFAULT_HOST
    mode: str = DEFAULT_MODE
    interval: float = DEFAULT_INTERVAL
    schedule: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    port: Optional[int] = None

    @property
    def uses_schedule(self) -> bool:
        return self.schedule is not None


@dataclass(frozen=True)
class LoggingSettings:
    """Represent the parsed logging configuration values."""

    level_name: str
    level: int
    file_path: Path
    max_bytes: int
    backup_count: int
    fmt: str
    datefmt: Optional[str]
    console: bool


def _normalise_directory(
    path_value: Union[str, os.PathLike, Path],
    *,
    base_dir: Optional[Path] = None,
) -> Path:
    """Normalize a path to an absolute form."""

    if path_value is None:
        raise ValueError("Missing directory path value")

    path = Path(path_value).expanduser()
    if path.is_absolute():
        return path.resolve()
    if base_dir is not None:
        base_path = Path(base_dir).expanduser().resolve()
        return (base_path / path).resolve()
    return path.resolve()


def get_home_dir() -> Path:
    """Return the application home, honouring ``REACHABILITY_HOME``."""

    env_path = os.environ.get(HOME_DIR_ENV)
    if env_path:
        try:
            return _normalise_directory(env_path)
        except Exception as exc:  # pragma: no cover - defensive logging
            LOGGER.warning("Environment variable %s has an invalid value: %s",
                           HOME_DIR_ENV, exc)
    return _normalise_directory(DEFAULT_APPLICATION_HOME)


def find_config_file(explicit: Optional[Union[str, os.PathLike]] = None
                     ) -> Optional[Path]:
    """Locate ``config.ini``.

    Priority order:
    1. ``explicit`` (must exist)
    2. Environment variable ``REACHABILITY_CONFIG`` (must exist)
    3. ``config.ini`` in the working directory
    """

    if explicit is not None:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ValueError(f"Configuration file not found: {path}")
        return path.resolve()

    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        path = Path(env_path).expanduser()
        if not path.is_file():
            raise ValueError(
                f"Environment variable {CONFIG_PATH_ENV} points to a missing file: {path}"
            )
        return path.resolve()

    candidate = Path(DEFAULT_CONFIG_NAME)
    if candidate.is_file():
        return candidate.resolve()
    return None


def _load_config_parser(
    path: Optional[Union[str, os.PathLike]] = None,
) -> Tuple[configparser.RawConfigParser, Optional[Path]]:
    config_path = find_config_file(path)
    parser = configparser.RawConfigParser()
    if config_path is not None:
        parser.read(os.fspath(config_path), encoding="utf-8")
    return parser, config_path


def parse_log_level(value: object,
                     *,
                     default: str = "INFO") -> Tuple[str, int]:
    text = str(value).strip() if value is not None else ""
    if not text:
        text = default
    normalised = text.upper()
    aliases = {
        "WARN": "WARNING",
        "FATAL": "CRITICAL",
        "TRACE": "NOTSET",
    }
    mapped = aliases.get(normalised, normalised)
    level_value = getattr(logging, mapped, None)
    if isinstance(level_value, int):
        return mapped, level_value
    try:
        numeric_level = int(text)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unable to parse log level: {value!r}") from exc
    if numeric_level < 0:
        raise ValueError(
            f"Log level must be a non-negative integer: {numeric_level}")
    level_name = logging.getLevelName(numeric_level)
    if not isinstance(level_name, str):
        level_name = str(numeric_level)
    return level_name.upper(), numeric_level


_SIZE_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}


def _parse_size_value(value: object,
                      *,
                      default: int = _DEFAULT_LOG_MAX_BYTES) -> int:
    text = str(value).strip() if value is not None else ""
    if not text:
        return max(int(default), 0)
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([kmg]?b)?\s*",
                         text,
                         flags=re.IGNORECASE)
    if not match:
        raise ValueError(f"Unable to parse log size: {value!r}")
    number = float(match.group(1))
    unit = match.group(2) or "B"
    factor = _SIZE_UNITS[unit.upper()]
    return max(int(number * factor), 0)


def _parse_bool_option(value: object, *, default: bool = True) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _BOOL_TRUE_VALUES:
        return True
    if text in _BOOL_FALSE_VALUES:
        return False
    raise ValueError(f"Unable to parse boolean value: {value!r}")


def _parse_int_option(
    value: object,
    *,
    default: int,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> int:
    text = str(value).strip() if value is not None else ""
    if not text:
        result = int(default)
    else:
        try:
            result = int(text)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Unable to parse integer value: {value!r}") from exc
    if minimum is not None and result < minimum:
        raise ValueError(
            f"Value {result} is smaller than the minimum {minimum}")
    if maximum is not None and result > maximum:
        raise ValueError(
            f"Value {result} is larger than the maximum {maximum}")
    return result


def _parse_positive_float(value: object, *, default: float) -> float:
    text = str(value).strip() if value is not None else ""
    if not text:
        return float(default)
    try:
        result = float(text)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unable to parse number: {value!r}") from exc
    if not result > 0:
        raise ValueError(f"Value {result} must be a positive number")
    return result


def _checked(section: str, name: str, parse: Callable[..., T], value: object,
             **kwargs) -> T:
    try:
        return parse(value, **kwargs)
    except ValueError as exc:
        raise ValueError(f"{section}.{name} is invalid: {exc}") from exc


def build_ping_settings(raw: Mapping[str, Optional[str]]) -> PingSettings:
    """Turn raw option strings (file or environment) into ``PingSettings``."""

    def _option(name: str) -> str:
        value = raw.get(name)
        return str(value).strip() if value is not None else ""

    host = _option("host") or DEFAULT_HOST
    mode = (_option("mode") or DEFAULT_MODE).upper()
    interval = _checked(PING_SECTION, "interval", _parse_positive_float,
                        _option("interval"), default=DEFAULT_INTERVAL)
    timeout = _checked(PING_SECTION, "timeout", _parse_positive_float,
                       _option("timeout"), default=DEFAULT_TIMEOUT)

    raw_port = _option("port")
    port = None
    if raw_port:
        port = _checked(PING_SECTION, "port", _parse_int_option, raw_port,
                        default=0, minimum=1, maximum=65535)

    schedule = _option("schedule") or None

    return PingSettings(
        host=host,
        mode=mode,
        interval=interval,
        schedule=schedule,
        timeout=timeout,
        port=port,
    )


def read_ping_settings(
    path: Optional[Union[str, os.PathLike]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> PingSettings:
    """Load ``PingSettings`` from ``[Ping]`` in ``config.ini`` and ``PING_*`` variables.

    Environment variables win over the file; missing options keep their defaults.
    """

    if environ is None:
        environ = os.environ

    parser, config_path = _load_config_parser(path)
    raw = {}
    if parser.has_section(PING_SECTION):
        for key in PING_ENV_MAP:
            value = parser.get(PING_SECTION, key, fallback=None)
            if value is not None:
                raw[key] = value
    for key, env_name in PING_ENV_MAP.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            raw[key] = value

    settings = build_ping_settings(raw)
    LOGGER.debug("Loaded ping settings from %s: %s", config_path or "defaults",
                 settings)
    return settings


def get_logging_settings(
    path: Optional[Union[str, os.PathLike]] = None,
) -> LoggingSettings:
    """Read and parse logging configuration into ``LoggingSettings``."""

    parser, _ = _load_config_parser(path)

    def _option(name: str, fallback: str = "") -> str:
        value = parser.get(LOGGING_SECTION, name, fallback=fallback)
        return value.strip() or fallback

    level_name, level = _checked(LOGGING_SECTION, "log_level",
                                 parse_log_level, _option("log_level"))
    max_bytes = _checked(LOGGING_SECTION, "log_max_size", _parse_size_value,
                         _option("log_max_size"))
    backup_count = _checked(LOGGING_SECTION, "log_backup_count",
                            _parse_int_option, _option("log_backup_count"),
                            default=_DEFAULT_LOG_BACKUP_COUNT, minimum=0)
    console = _checked(LOGGING_SECTION, "log_console", _parse_bool_option,
                       _option("log_console"))

    home = get_home_dir()
    raw_directory = _option("log_directory")
    if raw_directory:
        log_dir = _normalise_directory(raw_directory, base_dir=home)
    else:
        log_dir = home / _DEFAULT_LOG_DIRECTORY_NAME
    file_path = log_dir / _option("log_filename", _DEFAULT_LOG_FILENAME)

    return LoggingSettings(
        level_name=level_name,
        level=level,
        file_path=file_path.resolve(),
        max_bytes=max_bytes,
        backup_count=backup_count,
        fmt=_option("log_format", _DEFAULT_LOG_FORMAT),
        datefmt=_option("log_datefmt", _DEFAULT_LOG_DATEFMT),
        console=console,
    )


def _managed_handler(handler: logging.Handler, kind: str,
                     formatter: logging.Formatter,
                     level: int) -> logging.Handler:
    setattr(handler, _LOG_HANDLER_FLAG, True)
    setattr(handler, _LOG_HANDLER_KIND, kind)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def configure_logging(
    settings: Optional[LoggingSettings] = None,
    *,
    install_console: Optional[bool] = None,
) -> LoggingSettings:
    """Route the root logger to a rotating log file and, optionally, stderr.

    Handlers installed by an earlier call are closed and replaced, so the
    function can be called again after the settings change.

    :param settings: Pre-parsed settings, read from ``config.ini`` if omitted.
    :param install_console: Force enable/disable console output, defaults to config.
    :return: The applied ``LoggingSettings``.
    """

    if settings is None:
        settings = get_logging_settings()
    if install_console is None:
        install_console = settings.console

    reset_logging_configuration()
    settings.file_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.level)
    formatter = logging.Formatter(settings.fmt, settings.datefmt or None)

    root_logger.addHandler(
        _managed_handler(
            RotatingFileHandler(
                os.fspath(settings.file_path),
                maxBytes=settings.max_bytes,
                backupCount=settings.backup_count,
                encoding="utf-8",
            ),
            _LOG_HANDLER_FILE,
            formatter,
            settings.level,
        ))
    if install_console:
        root_logger.addHandler(
            _managed_handler(logging.StreamHandler(), _LOG_HANDLER_CONSOLE,
                             formatter, settings.level))
    return settings


def reset_logging_configuration() -> None:
    """Remove handlers previously added by ``configure_logging``."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _LOG_HANDLER_FLAG, False):
            root_logger.removeHandler(handler)
            handler.close()


def writeconfig(config_path: Union[str, os.PathLike]) -> Path:
    """Write a sample ``config.ini`` holding every supported option."""

    target = Path(config_path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)

    info = configparser.RawConfigParser()
    info.add_section(PING_SECTION)
    info.set(PING_SECTION, "host", DEFAULT_HOST)
    info.set(PING_SECTION, "mode", DEFAULT_MODE)
    info.set(PING_SECTION, "interval", str(DEFAULT_INTERVAL))
    info.set(PING_SECTION, "timeout", str(DEFAULT_TIMEOUT))
    info.set(PING_SECTION, "port", "")
    info.set(PING_SECTION, "schedule", "")

    info.add_section(LOGGING_SECTION)
    info.set(LOGGING_SECTION, "log_level", "info")
    info.set(LOGGING_SECTION, "log_directory", "")
    info.set(LOGGING_SECTION, "log_filename", _DEFAULT_LOG_FILENAME)
    info.set(LOGGING_SECTION, "log_max_size", "10MB")
    info.set(LOGGING_SECTION, "log_backup_count",
             str(_DEFAULT_LOG_BACKUP_COUNT))
    info.set(LOGGING_SECTION, "log_format", _DEFAULT_LOG_FORMAT)
    info.set(LOGGING_SECTION, "log_datefmt", _DEFAULT_LOG_DATEFMT)
    info.set(LOGGING_SECTION, "log_console", "true")

    with target.open("w", encoding="utf-8") as configfile:
        info.write(configfile)
    return target
