import os
import logging
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_NAMES = {
    "database_url": "DATABASE_URL",
    "database_name": "DATABASE_NAME",
    "jwt_secret": "JWT_SECRET",
}


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "homeshoppers"
    jwt_secret: Optional[str] = None
    app_env: str = Field("production", description="development | production")
    order_sequence: str = Field("counter", description="counter | count")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000
    # seconds, applied to every backend call
    backend_timeout: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME", "homeshoppers"),
            jwt_secret=os.getenv("JWT_SECRET") or None,
            app_env=os.getenv("APP_ENV", "production"),
            order_sequence=os.getenv("ORDER_SEQUENCE", "counter"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 8000)),
        )

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    def missing(self, *fields: str) -> List[str]:
        fields = fields or tuple(ENV_NAMES)
        return [ENV_NAMES.get(f, f.upper()) for f in fields if not getattr(self, f)]

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError naming every unset variable among `fields`."""
        missing = self.missing(*fields)
        if missing:
            detail = f"Missing required configuration: {', '.join(missing)}"
            logger.error(detail)
            raise ConfigurationError(details=detail)
