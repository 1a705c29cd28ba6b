"""
Utility functions for the Galop Watcher pipeline.

This module provides:
- Central logging configuration
- Safe JSON read/write helpers
- Environment variable helpers
- Watcher configuration loading
"""

import json
import logging
import os
import sys
import tempfile
import shutil
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# Default configuration values
DEFAULT_STORE_PATH = "data/seen.json"
DEFAULT_RUN_STATE_PATH = "data/run_state.json"
DEFAULT_STORE_CAP = 3000
DEFAULT_MESSAGE_BUDGET = 1800
# Leaves room for the longest section header plus a few lines
MIN_MESSAGE_BUDGET = 100
DEFAULT_CONFIRMED_PREFIX = "DP-P"
DEFAULT_TIMEZONE = "Europe/Paris"

TRUTHY_VALUES = ("true", "1", "yes")


class WatcherConfig:
    """Runtime configuration for a single watcher run."""

    def __init__(
        self,
        batch_path: str,
        store_path: str = DEFAULT_STORE_PATH,
        run_state_path: str = DEFAULT_RUN_STATE_PATH,
        confirmed_snapshot_path: Optional[str] = None,
        store_cap: int = DEFAULT_STORE_CAP,
        confirmed_prefix: str = DEFAULT_CONFIRMED_PREFIX,
        message_budget: int = DEFAULT_MESSAGE_BUDGET,
        timezone: str = DEFAULT_TIMEZONE,
        force: bool = False,
        first_of_period: bool = False,
        save_before_delivery: bool = False
    ):
        self.batch_path = batch_path
        self.store_path = store_path
        self.run_state_path = run_state_path
        self.confirmed_snapshot_path = confirmed_snapshot_path or None
        self.store_cap = store_cap
        self.confirmed_prefix = confirmed_prefix
        self.message_budget = message_budget
        self.timezone = timezone
        self.force = force
        self.first_of_period = first_of_period
        self.save_before_delivery = save_before_delivery

    def __repr__(self) -> str:
        return (
            f"WatcherConfig(batch_path={self.batch_path}, "
            f"store_path={self.store_path}, force={self.force})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_path": self.batch_path,
            "store_path": self.store_path,
            "run_state_path": self.run_state_path,
            "confirmed_snapshot_path": self.confirmed_snapshot_path,
            "store_cap": self.store_cap,
            "confirmed_prefix": self.confirmed_prefix,
            "message_budget": self.message_budget,
            "timezone": self.timezone,
            "force": self.force,
            "first_of_period": self.first_of_period,
            "save_before_delivery": self.save_before_delivery
        }


def load_config() -> WatcherConfig:
    """
    Load the watcher configuration from environment variables.

    Only BATCH_PATH is required; every other setting has a default.

    Returns:
        WatcherConfig built from the environment.

    Raises:
        ValueError: If BATCH_PATH is missing, a numeric setting is invalid,
            or TIMEZONE is not an IANA timezone name.
    """
    logger = get_logger("utils")

    batch_path = get_env_var("BATCH_PATH", required=True)
    assert batch_path is not None

    store_cap = get_env_int("STORE_CAP", DEFAULT_STORE_CAP)
    message_budget = get_env_int("MESSAGE_BUDGET", DEFAULT_MESSAGE_BUDGET)

    if store_cap <= 0:
        raise ValueError(f"STORE_CAP must be positive, got {store_cap}")
    if message_budget < MIN_MESSAGE_BUDGET:
        raise ValueError(
            f"MESSAGE_BUDGET must be at least {MIN_MESSAGE_BUDGET}, got {message_budget}"
        )

    tz_name = get_env_var("TIMEZONE", required=False, default=DEFAULT_TIMEZONE)
    assert tz_name is not None
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"TIMEZONE '{tz_name}' is not a known timezone")

    config = WatcherConfig(
        batch_path=batch_path,
        store_path=get_env_var("DATA_PATH", required=False, default=DEFAULT_STORE_PATH),
        run_state_path=get_env_var(
            "RUN_STATE_PATH", required=False, default=DEFAULT_RUN_STATE_PATH
        ),
        confirmed_snapshot_path=get_env_var("CONFIRMED_SNAPSHOT_PATH", required=False),
        store_cap=store_cap,
        confirmed_prefix=get_env_var(
            "CONFIRMED_STATUS_PREFIX", required=False, default=DEFAULT_CONFIRMED_PREFIX
        ),
        message_budget=message_budget,
        timezone=tz_name,
        force=get_env_bool("FORCE_POST"),
        first_of_period=get_env_bool("FIRST_OF_PERIOD"),
        save_before_delivery=get_env_bool("SAVE_BEFORE_DELIVERY")
    )

    logger.debug(f"Loaded configuration: {config.to_dict()}")
    return config


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("galop_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"galop_watcher.{name}")


def safe_read_json(filepath: str, default: Optional[Any] = None) -> Any:
    """
    Safely read JSON data from a file.

    Args:
        filepath: Path to the JSON file.
        default: Value to return if the file doesn't exist or is invalid.

    Returns:
        Parsed JSON data or the default value on failure.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        if not path.exists():
            logger.debug(f"File does not exist: {filepath}, returning default")
            return default

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            logger.debug(f"Successfully read JSON from {filepath}")
            return data

    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in {filepath}: {e}")
        return default
    except PermissionError as e:
        logger.error(f"Permission denied reading {filepath}: {e}")
        return default
    except OSError as e:
        logger.error(f"Unexpected error reading {filepath}: {e}")
        return default


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Safely write JSON data to a file using atomic write operation.

    Uses a temporary file and atomic rename to prevent data corruption
    if the write operation is interrupted.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Returns:
        True if write was successful, False otherwise.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            suffix=".json",
            prefix="galop_",
            dir=path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)

            shutil.move(temp_path, filepath)
            logger.debug(f"Successfully wrote JSON to {filepath}")
            return True

        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    except PermissionError as e:
        logger.error(f"Permission denied writing {filepath}: {e}")
        return False
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Unexpected error writing {filepath}: {e}")
        return False


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def get_env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean flag such as FORCE_POST=true."""
    value = get_env_var(name, required=False)
    if value is None:
        return default
    return value.lower() in TRUTHY_VALUES


def get_env_int(name: str, default: int) -> int:
    """
    Read an integer environment variable.

    Raises:
        ValueError: If the variable is set but is not an integer.
    """
    value = get_env_var(name, required=False)
    if value is None:
        return default

    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be an integer, got '{value}'")
