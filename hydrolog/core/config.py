"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Hydro Plant Log"
    debug: bool = False
    log_dir: str = ".logs/hydrolog"  # Relative to the user's home directory

    # Server
    host: str = "0.0.0.0"  # Bind to all interfaces for control-room tablets
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Database
    database_url: str = "sqlite:///./hydrolog.db"

    # Plant
    plant_name: str = "Gayatri Power Private Limited"
    plant_timezone: str = "Asia/Kolkata"  # All edit windows are computed in this zone
    transformer_count: int = 1

    # Log entry behaviour
    autosave_delay_seconds: float = 2.0
    clock_tick_seconds: int = 60


settings = Settings()
