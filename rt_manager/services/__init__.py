"""Application services used by the CLI."""

from .config_service import ConfigSaveResult, SystemConfigService
from .record_service import ImportResult, RecordService

__all__ = ["ConfigSaveResult", "ImportResult", "RecordService", "SystemConfigService"]
