"""Domain models for the entry composer.

This package contains the domain model classes shared by the services:
rows and blocks, catalog/sequence views, configuration and save results.
"""

from .config_models import ApiConfig, AppConfig, IdentifierConfig, StorageConfig, UploadConfig
from .entry import PLACEHOLDER, Block, Row, effective_dec
from .error_record import ErrorRecord
from .save_result import SaveMode, SaveResult, SaveState
from .sequence import Catalog, CatalogEntry, SequenceModel

__all__ = [
    # Configuration models
    "ApiConfig",
    "AppConfig",
    "IdentifierConfig",
    "StorageConfig",
    "UploadConfig",
    # Entry models
    "PLACEHOLDER",
    "Block",
    "Row",
    "effective_dec",
    "Catalog",
    "CatalogEntry",
    "SequenceModel",
    # Save models
    "ErrorRecord",
    "SaveMode",
    "SaveResult",
    "SaveState",
]
