"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str
    db_pool_size: int = 20
    db_max_overflow: int = 10

    # Deployment mode: "development", "local" or "production"
    environment: str = "development"

    # Clerk Configuration
    clerk_webhook_secret: Optional[str] = None
    clerk_jwt_key: Optional[str] = None  # PEM public key (RS256) or shared secret (HS*)
    clerk_jwt_algorithm: str = "RS256"
    clerk_authorized_parties: str = ""  # Comma-separated list of allowed "azp" claims

    # CORS Configuration
    cors_origins: str = (
        "https://property-sell.vercel.app,"
        "https://property-sell.onrender.com,"
        "http://localhost:3000"
    )
    local_origin: str = "http://localhost:5173"

    # Frontend bundle served in production
    static_dir: str = "client/dist"

    # Real-time relay delivery channels
    relay_room_delivery: bool = True
    relay_direct_delivery: bool = True

    # Application Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        """Origins accepted by CORS; local mode only trusts the Vite dev server."""
        if self.environment.lower() == "local":
            return [self.local_origin]
        return _split_csv(self.cors_origins)

    @property
    def authorized_parties(self) -> List[str]:
        return _split_csv(self.clerk_authorized_parties)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Global settings instance
settings = Settings()
