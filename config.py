"""
Application settings

Everything is read from the process environment once, after python-dotenv has
loaded a local .env file. Use get_settings() (also a FastAPI dependency) rather
than reading os.environ in handlers.
"""

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_JWT_SECRET = "change-this-secret-in-production"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    mongo_transactions: bool = False

    jwt_secret: str = DEFAULT_JWT_SECRET
    token_ttl_days: int = 7
    environment: str = "development"

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""

    resend_api_key: str = ""
    email_from: str = "TifinCart <no-reply@tifincart.app>"
    admin_email: str = ""
    base_url: str = "http://localhost:3000"

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    delivery_fee: float = 40.0
    tax_rate: float = 0.05

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    port: int = 8000

    @model_validator(mode="after")
    def _require_secret_in_production(self) -> "Settings":
        if self.is_production and self.jwt_secret in ("", DEFAULT_JWT_SECRET):
            raise ValueError("JWT_SECRET must be set when ENVIRONMENT is production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            mongo_transactions=_env_bool("MONGO_TRANSACTIONS"),
            jwt_secret=os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET,
            environment=os.getenv("ENVIRONMENT", "development"),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
            resend_api_key=os.getenv("RESEND_API_KEY", ""),
            email_from=os.getenv("EMAIL_FROM", "TifinCart <no-reply@tifincart.app>"),
            admin_email=os.getenv("ADMIN_EMAIL", ""),
            base_url=os.getenv("BASE_URL", "http://localhost:3000"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY", ""),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET", ""),
            delivery_fee=float(os.getenv("DELIVERY_FEE", "40")),
            tax_rate=float(os.getenv("TAX_RATE", "0.05")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 8000)),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
