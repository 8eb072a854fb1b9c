import json
import logging
from pathlib import Path
from typing import Dict, Any

import workspace_supervisor.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    A singleton class that merges default settings with JSON/env overrides.

    Precedence, lowest first:
    1. Base values from `settings.py`.
    2. Environment and `.env` values (read by `python-dotenv` in settings.py).
    3. `overrides.json` entries, for keys listed in `MODIFIABLE_SETTINGS` only.
    """

    def __init__(self, overrides_path: Path = None) -> None:
        self.OVERRIDES_JSON_PATH: Path = overrides_path or default_settings.OVERRIDES_JSON_PATH

        self._load_defaults()
        self._load_overrides()

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from the settings module as defaults."""
        for key in dir(default_settings):
            if key.isupper() and key != "OVERRIDES_JSON_PATH":
                setattr(self, key, getattr(default_settings, key))

    def _load_overrides(self) -> None:
        if not self.OVERRIDES_JSON_PATH.exists():
            return

        try:
            with self.OVERRIDES_JSON_PATH.open('r') as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return
        if not isinstance(overrides, dict):
            log.error(f"Overrides file '{self.OVERRIDES_JSON_PATH}' must hold a JSON object. Ignoring it.")
            return

        log.info(f"Loading runtime configuration overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue
            try:
                setattr(self, key, self._coerce(getattr(self, key), value))
                log.debug(f"Overridden setting: {key} = {value}")
            except (ValueError, TypeError) as e:
                log.error(f"Could not apply override '{key}={value}': {e}")

    @staticmethod
    def _coerce(original_value: Any, value: Any) -> Any:
        """Coerces an override to the type of the default it replaces."""
        if isinstance(original_value, bool):
            return str(value).lower() in ('true', '1', 't', 'yes', 'y')
        if isinstance(original_value, Path):
            return Path(value)
        if original_value is not None:
            return type(original_value)(value)
        return value

    def update_setting(self, key: str, value: Any) -> bool:
        """
        Updates a modifiable setting in memory and persists it to the overrides file.

        :param key: The setting name, e.g. 'MAINTENANCE_TIMEOUT'.
        :param value: The new value; coerced to the type of the current value.
        :return: True if the setting was updated, False otherwise.
        """
        if key not in self.MODIFIABLE_SETTINGS:
            log.warning(f"Rejected config update: Setting '{key}' is not modifiable.")
            return False
        try:
            setattr(self, key, self._coerce(getattr(self, key, None), value))
        except (ValueError, TypeError) as e:
            log.error(f"Could not convert value '{value}' for key '{key}'. Error: {e}")
            return False

        self.save_overrides({k: getattr(self, k) for k in self.MODIFIABLE_SETTINGS})
        log.info(f"Setting '{key}' updated to '{getattr(self, key)}'.")
        return True

    def save_overrides(self, overrides_to_save: Dict[str, Any]) -> None:
        """
        Saves the provided settings to the overrides JSON file.
        Only keys present in `MODIFIABLE_SETTINGS` are persisted.

        :param overrides_to_save: A dictionary of settings to persist.
        """
        persisted = {k: v for k, v in overrides_to_save.items() if k in self.MODIFIABLE_SETTINGS}
        if not persisted:
            log.warning("Nothing to persist: none of the given settings is modifiable.")
            return

        target = self.OVERRIDES_JSON_PATH
        temp_path = target.with_suffix(".tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(persisted, indent=4, sort_keys=True), encoding="utf-8")
            temp_path.replace(target)
            log.info(f"Persisted {len(persisted)} setting override(s) to {target}")
        except OSError as e:
            log.error(f"Could not persist setting overrides to '{target}': {e}")
        finally:
            temp_path.unlink(missing_ok=True)


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
