"""Application settings loaded from the environment"""
import os
import logging
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Searches current dir and parents for a .env file
load_dotenv()


class Settings(BaseModel):
    """Process-wide configuration, built once at startup."""
    mongodb_uri: Optional[str] = None
    db_name: str = "friend_ledger"
    expenses_collection: str = "expenses"
    user_id_header: str = "X-User-Id"
    rate_limit: str = "30/minute"
    rate_limit_enabled: bool = True
    # Lower bound for amounts; None keeps any finite amount acceptable
    min_amount: Optional[Decimal] = None
    cors_origins: List[str] = ["*"]
    ledger_api_url: str = "http://localhost:8000/api"


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    min_amount = os.getenv("MIN_AMOUNT")
    settings = Settings(
        mongodb_uri=os.getenv("MONGODB_URI"),
        db_name=os.getenv("DB_NAME", "friend_ledger"),
        expenses_collection=os.getenv("EXPENSES_COLLECTION", "expenses"),
        user_id_header=os.getenv("USER_ID_HEADER", "X-User-Id"),
        rate_limit=os.getenv("RATE_LIMIT", "30/minute"),
        rate_limit_enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
        min_amount=Decimal(min_amount) if min_amount else None,
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "*")),
        ledger_api_url=os.getenv("LEDGER_API_URL", "http://localhost:8000/api"),
    )
    if not settings.mongodb_uri:
        logger.error("MONGODB_URI environment variable not set! Database connection will fail.")
    return settings
