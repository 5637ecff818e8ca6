"""Application configuration"""
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_SUPPORTED_ALGORITHMS = {"RS256", "RS384", "RS512", "ES256", "ES384", "HS256", "HS384", "HS512"}


class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = "sqlite:///./tokencart.db"
    DATABASE_AUTO_CREATE: bool = True       # create tables on startup (no migrations)
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # JWT Authentication
    JWT_ALGORITHM: str = "RS256"             # RS*/ES* (asymmetric) or HS* (shared secret)
    JWT_PRIVATE_KEY: Optional[str] = None    # PEM string for RS*/ES*
    JWT_PRIVATE_KEY_FILE: Optional[str] = None
    JWT_SECRET_KEY: Optional[str] = None     # shared secret for HS*
    JWT_AUTO_GENERATE_KEY: bool = True       # ephemeral key when none configured
    JWT_KEY_ID: Optional[str] = None         # kid header for key rotation tracking
    JWT_ACCESS_EXPIRE_SECONDS: int = Field(3600, gt=0)

    # Credential hashing
    BCRYPT_ROUNDS: int = Field(12, ge=4, le=31)

    # Session store
    STORE_BACKEND: str = "memory"            # memory | database
    STORE_TIMEOUT_SECONDS: float = Field(5.0, gt=0)
    STORE_RETRY_ATTEMPTS: int = Field(3, ge=1)
    STORE_RETRY_BACKOFF_SECONDS: float = Field(0.05, ge=0)
    SESSION_TTL_SECONDS: int = Field(86400, gt=0)
    SESSION_SWEEP_INTERVAL_SECONDS: int = Field(300, ge=0)  # 0 disables the sweeper
    CLEAR_SESSION_ON_LOGOUT: bool = True

    # Principals
    ALLOW_REGISTRATION: bool = True
    DEFAULT_ROLE: str = "customer"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: List[str] = ["100/minute", "1000/hour"]
    RATE_LIMIT_STORAGE_URI: str = "memory://"  # Use redis:// for production

    # Monitoring
    METRICS_ENABLED: bool = True
    METRICS_PATH: str = "/metrics"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        if value not in _SUPPORTED_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {sorted(_SUPPORTED_ALGORITHMS)}")
        return value

    @field_validator("STORE_BACKEND")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        if value not in ("memory", "database"):
            raise ValueError("STORE_BACKEND must be 'memory' or 'database'")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def uses_shared_secret(self) -> bool:
        return self.JWT_ALGORITHM.startswith("HS")


settings = Settings()
