import json
import os
from tt.common.logger import log
from tt.common.setup import PATHS

#region === Defaults and Paths ===

SETTINGS_PATH = PATHS.current / "settings.json"

# Default values for every setting, also used as the type reference when validating a loaded file.
_SETTINGS_DEFAULTS = {
    "api_base_url": "http://localhost:5000/api/v1",
    "request_timeout": 10.0,
    "user_id": None,
    "tick_interval_ms": 1000,
    "read_retries": 3,
    "retry_base_delay": 0.5,
    "retry_max_delay": 8.0,
    "default_description": "Timer session",
    "manual_description": "Manual time entry",
    "manual_start_hour_utc": 9,
    "log_level": "INFO",
    "log_console": False,
}

# Environment variables that override whatever the settings file says.
_ENV_OVERRIDES = {
    "TT_API_BASE_URL": "api_base_url",
    "TT_USER_ID": "user_id",
    "TT_LOG_LEVEL": "log_level",
}

def build_default_settings():
    return dict(_SETTINGS_DEFAULTS)

# Whether a loaded value is acceptable for the given key. Numbers can be int where a float is expected, and user_id
# can be a string or unset.
def _valid_value(key, value):
    default = _SETTINGS_DEFAULTS[key]
    if key == "user_id":
        return value is None or isinstance(value, str)
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, type(default))

#endregion === Defaults and Paths ===

#region === Saving and Loading Settings ===

# Loads settings from SETTINGS_PATH, filling in defaults for anything missing or of the wrong type. Never raises for
# a bad file, we just fall back to defaults and warn.
def load_settings():
    settings = build_default_settings()
    try:
        if not SETTINGS_PATH.exists():
            log.info(f"No settings file found at '{SETTINGS_PATH}', using default settings.")
        else:
            with open(SETTINGS_PATH, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise TypeError(f"settings root must be an object, got {type(loaded).__name__}")

            defaulted_values = set()
            for key in _SETTINGS_DEFAULTS:
                if key in loaded and _valid_value(key, loaded[key]):
                    settings[key] = loaded[key]
                else:
                    defaulted_values.add(key)

            if defaulted_values:
                log.warning(f"Loaded settings from '{SETTINGS_PATH}', but with missing or invalid values that were "
                            f"defaulted: {', '.join(sorted(defaulted_values))}")
            else:
                log.info(f"Successfully loaded settings from '{SETTINGS_PATH}'.")
    except (json.JSONDecodeError, OSError, TypeError):
        log.warning("Ran into an error while trying to load settings.json, falling back to default settings.", exc_info=True)
        settings = build_default_settings()

    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            settings[key] = value
            log.debug(f"Setting '{key}' overridden from environment variable {env_name}")

    for key in ("request_timeout", "retry_base_delay", "retry_max_delay"):
        settings[key] = float(settings[key])
    return settings

def save_settings(settings):
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_PATH, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    log.info(f"Successfully saved settings to '{SETTINGS_PATH}'")

#endregion === Saving and Loading Settings ===
