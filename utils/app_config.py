"""Pre-DB bootstrap configuration. Zero imports from the rest of the app.

Stores preferences that must be known before opening the DB (db_folder,
logging) and the scheduler timings. Config lives in
~/.budget_ledger/config.json.
"""
import json
import os
from dataclasses import dataclass
from pathlib import Path

CONFIG_DIR = Path.home() / ".budget_ledger"
CONFIG_FILE = CONFIG_DIR / "config.json"


@dataclass
class RuntimeSettings:
    db_folder: str | None = None
    log_level: str = "INFO"
    log_json: bool = False
    min_check_interval_minutes: int = 30
    foreground_poll_minutes: int = 60
    background_interval_hours: int = 12
    reminder_hour: int = 9
    check_registry_before_reschedule: bool = False


def load_config(path: Path | None = None) -> dict:
    """Returns {} on missing or corrupt file; never raises."""
    try:
        with open(path or CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except Exception:
        return {}


def save_config(config: dict, path: Path | None = None) -> None:
    """Creates the config dir if needed; atomic write via .tmp + os.replace()."""
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        os.replace(tmp, target)
    except Exception:
        try:
            tmp.unlink(missing_ok=True)
        except Exception:
            pass


def load_runtime_settings(path: Path | None = None) -> RuntimeSettings:
    """Build RuntimeSettings from the config file, ignoring bad values."""
    config = load_config(path)
    settings = RuntimeSettings()
    for name, default in vars(RuntimeSettings()).items():
        if name not in config:
            continue
        value = config[name]
        if default is None or value is None:
            setattr(settings, name, value)
            continue
        try:
            if isinstance(default, bool):
                setattr(settings, name, bool(value))
            elif isinstance(default, int):
                setattr(settings, name, max(0, int(value)))
            else:
                setattr(settings, name, str(value))
        except (TypeError, ValueError):
            pass
    return settings

