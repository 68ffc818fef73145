from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DECIMAL_KEYED_TOKENS,
    DEFAULT_LANES,
    DEFAULT_TIMEOUT_SECONDS,
    LOCAL_ONLY,
    ApiConfig,
    AppConfig,
    IdentifierConfig,
    StorageConfig,
    UploadConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (default ``config/entryface.yml``)
- Validate against ``config_schema.json`` (shipped next to this module)
- Apply defaults for every optional key
- Apply ENTRYFACE_* environment overrides to the api section
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "apply_env_overrides",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/entryface.yml")
SCHEMA_PATH = Path(__file__).parent / "config_schema.json"

ENV_API_BASE = "ENTRYFACE_API_BASE"
ENV_LANGUAGE = "ENTRYFACE_LANGUAGE"
ENV_TENANT = "ENTRYFACE_TENANT"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the config
            data fails validation (missing keys, wrong types, extra keys)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    _validate_config_schema(data)

    api_raw = _section(data, "api")
    upload_raw = _section(data, "upload")
    storage_raw = _section(data, "storage")
    ident_raw = _section(data, "identifier")

    return AppConfig(
        page=data["page"],
        api=ApiConfig(
            base=api_raw.get("base", LOCAL_ONLY),
            language=api_raw.get("language", "en"),
            tenant=api_raw.get("tenant") or None,
        ),
        upload=UploadConfig(
            chunk_size=int(upload_raw.get("chunk_size", DEFAULT_CHUNK_SIZE)),
            lanes=int(upload_raw.get("lanes", DEFAULT_LANES)),
            timeout_seconds=float(upload_raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        ),
        storage=StorageConfig(
            path=Path(storage_raw.get("path", "./data/store")),
            export_directory=Path(storage_raw.get("export_directory", "./exports")),
        ),
        identifier=IdentifierConfig(
            decimal_keyed_tokens=tuple(
                ident_raw.get("decimal_keyed_tokens", DEFAULT_DECIMAL_KEYED_TOKENS)
            ),
        ),
    )


def apply_env_overrides(
    config: AppConfig, environ: Mapping[str, str] | None = None
) -> AppConfig:
    """Let ENTRYFACE_API_BASE / ENTRYFACE_LANGUAGE / ENTRYFACE_TENANT win over the file.

    An empty ENTRYFACE_TENANT clears the tenant (sent as null).
    """
    env = os.environ if environ is None else environ
    api = config.api
    base = env.get(ENV_API_BASE)
    if base:
        if base != LOCAL_ONLY and not base.startswith(("http://", "https://")):
            raise ConfigError(f"{ENV_API_BASE} must be LOCAL_ONLY or an http(s) URL: {base}")
        api = replace(api, base=base)
    language = env.get(ENV_LANGUAGE)
    if language:
        api = replace(api, language=language)
    if ENV_TENANT in env:
        api = replace(api, tenant=env[ENV_TENANT] or None)
    return replace(config, api=api)
