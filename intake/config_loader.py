import yaml
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "settings.yaml"

def load_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Reads the YAML settings file and checks the keys the engine cannot run without.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            settings = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML configuration: {e}")

    if not settings or "model" not in settings or "id" not in settings["model"]:
        raise ValueError("Invalid configuration: 'model.id' is missing.")

    settings.setdefault("sync", {}).setdefault("debounce_seconds", 1.5)
    settings.setdefault("storage", {}).setdefault("db_path", "data/intake.db")
    settings.setdefault("session", {}).setdefault("ttl_seconds", None)
    settings.setdefault("logging", {}).setdefault("level", "INFO")
    return settings

@lru_cache(maxsize=1)
def get_settings() -> Dict[str, Any]:
    """
    Reads config/settings.yaml from the project root.
    Returns a dictionary containing the configuration.
    """
    return load_settings()
