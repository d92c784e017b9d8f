"""
Configuration and credential loading for b2transfer.

Settings come from an optional JSON config file overridden by environment
variables; credentials come from a JSON credentials file or, when that
file does not exist, from the B2 environment variables.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

from .api import DEFAULT_API_URL
from .exceptions import ConfigurationError
from .models import Credentials
from .retry import RetryPolicy
from .utils import DEFAULT_CHUNK_SIZE

DEFAULT_CONFIG_FILE = Path.home() / ".b2transfer" / "config.json"

# Key names accepted in a credentials file, first match wins
KEY_ID_FIELDS = ("keyId", "applicationKeyId", "accountId", "id")
KEY_FIELDS = ("applicationKey", "key")


@dataclass
class TransferConfig:
    """Settings of a b2transfer run."""

    api_url: str = DEFAULT_API_URL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    timeout: int = 60
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    max_reauthorizations: int = 3
    max_workers: Optional[int] = None

    def validate(self):
        """Check value ranges, raising ConfigurationError on the first bad one."""
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive", config_key="chunk_size")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive", config_key="timeout")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", config_key="max_attempts")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", config_key="max_workers")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays cannot be negative", config_key="base_delay")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            max_reauthorizations=self.max_reauthorizations,
        )


def _read_json(path: Path, what: str) -> dict:
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed {what} file {path}: {e}") from e
    except IOError as e:
        raise ConfigurationError(f"Cannot read {what} file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{what.capitalize()} file {path} must contain a JSON object")
    return data


def load_config(path: Optional[Union[str, Path]] = None) -> TransferConfig:
    """
    Load settings from a JSON file and the environment.

    Args:
        path: Config file; defaults to ~/.b2transfer/config.json. A missing
            default file is not an error, a missing explicit one is.

    Returns:
        Validated TransferConfig
    """
    explicit = path is not None
    config_file = Path(path) if explicit else DEFAULT_CONFIG_FILE

    values = {}
    if config_file.exists():
        data = _read_json(config_file, "config")
        known = {f.name for f in fields(TransferConfig)}
        values = {key: value for key, value in data.items() if key in known}
    elif explicit:
        raise ConfigurationError(f"Config file not found: {config_file}")

    api_url = os.getenv("B2TRANSFER_API_URL")
    if api_url:
        values["api_url"] = api_url

    max_workers = os.getenv("B2TRANSFER_MAX_WORKERS")
    if max_workers:
        try:
            values["max_workers"] = int(max_workers)
        except ValueError:
            raise ConfigurationError(
                f"B2TRANSFER_MAX_WORKERS must be an integer, got {max_workers!r}",
                config_key="max_workers",
            )

    try:
        config = TransferConfig(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid config file {config_file}: {e}") from e
    return config.validate()


def _first(data: dict, names) -> Optional[str]:
    for name in names:
        value = data.get(name)
        if value:
            return value
    return None


def load_credentials(path: Union[str, Path]) -> Credentials:
    """
    Load the application key.

    Args:
        path: JSON credentials file (``{"keyId": ..., "applicationKey": ...}``)

    Returns:
        Credentials from the file, or from B2_APPLICATION_KEY_ID and
        B2_APPLICATION_KEY when the file does not exist
    """
    cred_file = Path(path)

    if cred_file.exists():
        data = _read_json(cred_file, "credentials")
        key_id = _first(data, KEY_ID_FIELDS)
        key = _first(data, KEY_FIELDS)
        if not key_id or not key:
            raise ConfigurationError(
                f"Credentials file {cred_file} must define keyId and applicationKey"
            )
        return Credentials(key_id=key_id, application_key=key)

    key_id = os.getenv("B2_APPLICATION_KEY_ID")
    key = os.getenv("B2_APPLICATION_KEY")
    if key_id and key:
        return Credentials(key_id=key_id, application_key=key)

    raise ConfigurationError(
        f"Unable to fetch credentials: {cred_file} does not exist and "
        "B2_APPLICATION_KEY_ID / B2_APPLICATION_KEY are not set"
    )
