"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SplitLab"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./splitlab.db"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Defaults applied when an experiment is created without a metrics block
    default_confidence_level: float = 0.95
    default_minimum_sample_size: int = 100
    default_minimum_effect_size: float = 0.05  # relative lift, 0.05 == 5%

    # Listing
    experiments_page_size: int = 20
    max_experiments_page_size: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
