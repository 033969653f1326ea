"""Connection settings for the Exercism API.

Reads settings from CLI args, environment variables, .env files, YAML
config file fallbacks and, for the API token only, the configuration of the
official Exercism CLI.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Exercism CLI config > Built-in defaults

Environment variables:
    EXERCISM_API_TOKEN: Exercism API token (required unless the Exercism CLI is configured)
    EXERCISM_API_BASE_URL: API root URL (optional, default: https://exercism.org/api)
    EXERCISM_BACKUP_MAX_DOWNLOADS: Max concurrent downloads (optional, default: 4)
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from .core.async_utils import DEFAULT_MAX_DOWNLOADS

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://exercism.org/api"


@dataclass
class Config:
    api_token: str
    api_base_url: str = DEFAULT_API_BASE_URL
    max_downloads: int = DEFAULT_MAX_DOWNLOADS


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid or the token is empty.
    """
    config.api_base_url = config.api_base_url.strip()

    if not config.api_base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_base_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_base_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_base_url}': URL must include a hostname"
        )

    config.api_base_url = config.api_base_url.removesuffix("/")

    if not config.api_token.strip():
        raise ValueError(
            "Exercism API token cannot be empty. Set EXERCISM_API_TOKEN environment variable."
        )

    if not (1 <= config.max_downloads <= 100):
        raise ValueError(
            f"Invalid max downloads {config.max_downloads}: must be a number between 1 and 100"
        )


def exercism_cli_config_path() -> Path:
    """Return the location of the Exercism CLI's ``user.json``."""
    if sys.platform == "win32":
        base = os.getenv("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / "exercism" / "user.json"
    xdg = os.getenv("EXERCISM_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "user.json"
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "exercism" / "user.json"


def get_cli_token(path: Path | None = None) -> str | None:
    """Read the API token configured for the Exercism CLI, if any."""
    path = path or exercism_cli_config_path()
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Could not read Exercism CLI config %s: %s", path, exc)
        return None

    token = data.get("token") if isinstance(data, dict) else None
    if isinstance(token, str) and token.strip():
        logger.debug("Using API token from Exercism CLI config %s", path)
        return token.strip()
    return None


def load_config(
    token: str | None = None,
    api_base_url: str | None = None,
    max_downloads: int | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > Exercism CLI (token only) > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override API token.
        api_base_url: Override API root URL.
        max_downloads: Override maximum concurrent downloads.
        yaml_fallbacks: Dict of values from the YAML config ``exercism`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If no API token can be found or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    api_token = (
        token
        or os.getenv("EXERCISM_API_TOKEN")
        or fb.get("token")
        or get_cli_token()
    )
    if not api_token:
        raise ValueError(
            "Exercism API token not found. Set EXERCISM_API_TOKEN environment variable, "
            "pass --token CLI argument, add 'token' to config.yml, "
            "or configure the Exercism CLI."
        )

    final_url = (
        api_base_url
        or os.getenv("EXERCISM_API_BASE_URL")
        or fb.get("api_base_url")
        or DEFAULT_API_BASE_URL
    )

    if max_downloads is not None:
        final_max_downloads = max_downloads
    else:
        raw = os.getenv("EXERCISM_BACKUP_MAX_DOWNLOADS")
        if raw is not None:
            try:
                final_max_downloads = int(raw)
            except ValueError:
                raise ValueError(
                    f"Invalid EXERCISM_BACKUP_MAX_DOWNLOADS '{raw}': must be a number between 1 and 100"
                ) from None
        elif "max_downloads" in fb:
            final_max_downloads = int(fb["max_downloads"])
        else:
            final_max_downloads = DEFAULT_MAX_DOWNLOADS

    config = Config(
        api_token=api_token.strip(),
        api_base_url=final_url,
        max_downloads=final_max_downloads,
    )

    validate_config(config)

    return config
