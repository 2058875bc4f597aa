"""
Relocalization Service Configuration
Environment-based configuration management
"""

from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relocalization service configuration settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RELOCALIZATION_",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development", description="Environment (development/staging/production)")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")
    LOG_TO_FILE: bool = Field(default=False, description="Write rotating log files in addition to stdout")

    # Server configuration
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=9010, description="Server port")

    # CORS configuration
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # Placement scoring
    ACCEPTANCE_THRESHOLD: float = Field(default=0.7, description="Minimum confidence to commit a placement")
    MAX_SEARCH_DISTANCE: float = Field(default=3.0, description="Maximum candidate distance from the saved point")
    MAX_VERTICAL_DIFFERENCE: float = Field(default=0.5, description="Maximum candidate height difference")
    HEIGHT_PRESERVE_TOLERANCE: float = Field(default=0.3, description="Height drift kept as noise when reconciling")
    MESH_SNAP_DISTANCE: float = Field(default=0.1, description="Mesh vertex distance at which confidence reaches zero")

    # Retry queue
    RETRY_INTERVAL_SECONDS: float = Field(default=2.0, description="Retry timer interval in seconds")
    RETRY_BATCH_SIZE: int = Field(default=3, description="Maximum pending placements attempted per tick")
    RETRY_MAX_ATTEMPTS: Optional[int] = Field(default=None, description="Drop pending placements after this many attempts (unset = retry forever)")

    # Environment mapping
    SCANNING_STRATEGY: str = Field(default="auto", description="Scanning strategy (auto/standard/precision)")

    @field_validator("ACCEPTANCE_THRESHOLD")
    @classmethod
    def validate_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("Acceptance threshold must be between 0.0 and 1.0")
        return v

    @field_validator("MAX_SEARCH_DISTANCE", "MAX_VERTICAL_DIFFERENCE", "MESH_SNAP_DISTANCE", "RETRY_INTERVAL_SECONDS")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("HEIGHT_PRESERVE_TOLERANCE")
    @classmethod
    def validate_tolerance(cls, v):
        if v < 0:
            raise ValueError("Height tolerance must not be negative")
        return v

    @field_validator("RETRY_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v):
        if v < 1:
            raise ValueError("Retry batch size must be at least 1")
        return v

    @field_validator("RETRY_MAX_ATTEMPTS")
    @classmethod
    def validate_max_attempts(cls, v):
        if v is not None and v < 1:
            raise ValueError("Retry max attempts must be at least 1 when set")
        return v

    @field_validator("SCANNING_STRATEGY")
    @classmethod
    def validate_strategy(cls, v):
        v = v.lower()
        if v not in ("auto", "standard", "precision"):
            raise ValueError("Scanning strategy must be one of auto, standard, precision")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT.lower() == "development"

    def get_retry_config(self) -> dict:
        """Get retry queue configuration"""
        return {
            "interval": self.RETRY_INTERVAL_SECONDS,
            "batch_size": self.RETRY_BATCH_SIZE,
            "max_attempts": self.RETRY_MAX_ATTEMPTS,
            "acceptance_threshold": self.ACCEPTANCE_THRESHOLD,
        }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings


__all__ = ["settings", "Settings", "get_settings"]
