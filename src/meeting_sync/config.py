"""
Configuration management for the meeting sync pipeline.

Loads settings from environment variables (and a project-root .env file)
with sensible defaults. Credentials default to empty strings so importing
the package never fails; call ``missing_required()`` before a live run.
"""

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class SyncSettings(BaseSettings):
    """Environment-driven settings for both sync and enrichment runs."""

    # Attio (origin)
    ATTIO_API_KEY: str = ''
    ATTIO_BASE_URL: str = 'https://api.attio.com'

    # HubSpot (target)
    HUBSPOT_ACCESS_TOKEN: str = ''
    HUBSPOT_BASE_URL: str = 'https://api.hubapi.com'
    HUBSPOT_PORTAL_ID: str = ''
    HUBSPOT_APP_HOST: str = 'app.hubspot.com'
    MEETING_RECORDINGS_FOLDER_ID: str = ''

    # HTTP / retry
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, ge=1, le=300)
    RETRY_MAX_ATTEMPTS: int = Field(default=4, ge=1, le=10)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, ge=0)
    PAGE_DELAY_SECONDS: float = Field(default=0.1, ge=0)

    # Association batching
    ASSOCIATION_BATCH_SIZE: int = Field(default=10, ge=1, le=100)
    ASSOCIATION_BATCH_DELAY_SECONDS: float = Field(default=1.5, ge=0)

    # Pipeline behaviour
    UPGRADE_BODY_THRESHOLD: int = Field(default=500, ge=0)
    MAX_REPORTED_ERRORS: int = Field(default=10, ge=1)
    ID_LEDGER_PATH: str = '.meeting-sync/id-ledger.json'
    INCLUDE_CALLS: bool = False
    DRY_RUN: bool = False
    LOG_LEVEL: str = 'INFO'

    def missing_required(self, enrichment: bool = False, origin: bool = True) -> list[str]:
        """
        Validate that required configuration is present.

        Args:
            enrichment: Also require the settings used by the enrichment pass
            origin: Require Attio credentials (False for HubSpot-only commands)

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if origin and not self.ATTIO_API_KEY:
            missing.append('ATTIO_API_KEY')
        if not self.HUBSPOT_ACCESS_TOKEN:
            missing.append('HUBSPOT_ACCESS_TOKEN')
        if enrichment:
            if not self.HUBSPOT_PORTAL_ID:
                missing.append('HUBSPOT_PORTAL_ID')
            if not self.MEETING_RECORDINGS_FOLDER_ID:
                missing.append('MEETING_RECORDINGS_FOLDER_ID')
        return missing


@lru_cache
def get_settings() -> SyncSettings:
    """Cached settings singleton."""
    return SyncSettings()
