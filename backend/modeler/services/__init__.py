"""Service layer for models and app definitions.

Exposes:
- ModelService
- AppDefinitionExportService
- AppDefinitionImportService
- AppDefinitionPublishService
"""

from .models import ModelService
from .exports import AppDefinitionExportService
from .imports import AppDefinitionImportService
from .publish import AppDefinitionPublishService

__all__ = [
    "ModelService",
    "AppDefinitionExportService",
    "AppDefinitionImportService",
    "AppDefinitionPublishService",
]
