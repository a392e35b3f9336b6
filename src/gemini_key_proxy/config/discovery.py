import os
from pathlib import Path


CONFIG_FILE_NAMES = (".gemini_key_proxy.toml", "gemini_key_proxy.toml")


def get_xdg_config_home() -> Path:
    """Return $XDG_CONFIG_HOME, defaulting to ~/.config."""
    return Path(os.environ.get("XDG_CONFIG_HOME", "~/.config")).expanduser()


def get_config_dir() -> Path:
    """Get the proxy configuration directory inside the user config directory."""
    return get_xdg_config_home() / "gemini_key_proxy"


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file.

    Searches in the following order:
    1. .gemini_key_proxy.toml in current directory
    2. gemini_key_proxy.toml in current directory
    3. config.toml in the user config directory
    """
    candidates = [Path(name).resolve() for name in CONFIG_FILE_NAMES]
    candidates.append(get_config_dir() / "config.toml")

    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate

    return None
