from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

"""Config dataclasses for the entry composer.

These are built by ``entryface.config.loader.load_config`` from the YAML file
after schema validation; defaults here match the defaults documented in the
schema.
"""

LOCAL_ONLY = "LOCAL_ONLY"

DEFAULT_CHUNK_SIZE = 5000
DEFAULT_LANES = 2
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_DECIMAL_KEYED_TOKENS: tuple[str, ...] = ("E",)


@dataclass(frozen=True)
class ApiConfig:
    """Upsert endpoint settings.

    ``base == "LOCAL_ONLY"`` selects the local queue unconditionally;
    otherwise ``base`` is the URL prefix the upsert path is appended to.
    """
    base: str = LOCAL_ONLY
    language: str = "en"
    tenant: str | None = None

    @property
    def local_only(self) -> bool:
        return self.base == LOCAL_ONLY


@dataclass(frozen=True)
class UploadConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE  # pairs per upsert request
    lanes: int = DEFAULT_LANES  # concurrent request lanes
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS  # per request


@dataclass(frozen=True)
class StorageConfig:
    path: Path = Path("./data/store")  # JsonFileStore directory
    export_directory: Path = Path("./exports")  # CSV / .xls / .md output


@dataclass(frozen=True)
class IdentifierConfig:
    # Tokens whose identifier suffix is the row decimal instead of the block number
    decimal_keyed_tokens: tuple[str, ...] = DEFAULT_DECIMAL_KEYED_TOKENS


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    page: str  # namespaces storage keys; sent as the upsert "reason"
    api: ApiConfig = field(default_factory=ApiConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    identifier: IdentifierConfig = field(default_factory=IdentifierConfig)
