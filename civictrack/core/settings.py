"""
Core settings and environment variables for CivicTrack.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "CivicTrack"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - Frontend URLs allowed to access this API (comma separated)
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5174,http://127.0.0.1:5173"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON

    # In-memory DB mode for local development and tests without Firebase credentials
    USE_MOCK_DB: bool = False
    MOCK_DB_PATH: Optional[str] = "./mock_db.json"

    # Default SLA windows in hours, per report priority.
    # Admin edits are stored in the sla_rules collection and take precedence.
    SLA_HOURS_LOW: int = 120
    SLA_HOURS_MEDIUM: int = 96
    SLA_HOURS_HIGH: int = 48
    SLA_HOURS_URGENT: int = 24
    SLA_AT_RISK_RATIO: float = 0.75  # Fraction of the window after which a report is "at risk"

    # Escalation scan (page size; every open report is read each scan)
    ESCALATION_SCAN_LIMIT: int = 500

    # Notifications (simulated: written to the notifications collection)
    NOTIFICATIONS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

    @property
    def cors_origin_list(self):
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
