import os
from pathlib import Path
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Load environment variables
env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

STRATEGY_STRICT = "STRICT"
STRATEGY_WATERFALL = "WATERFALL"
ALLOCATION_MANUAL = "MANUAL"
ALLOCATION_FIFO = "FIFO"


def _pick_choice(key: str, default: str, allowed: tuple) -> str:
    value = (os.getenv(key) or default).strip().upper()
    return value if value in allowed else default


class Settings(BaseModel):
    model_config = ConfigDict(case_sensitive=True)

    APP_NAME: str = "Rikshaw Ledger"
    DB_URL: str = Field(default_factory=lambda: os.getenv("DB_URL", "sqlite:///./rikshaw_ledger.db"))
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Reconciliation behaviour
    RECONCILIATION_STRATEGY: str = Field(
        default_factory=lambda: _pick_choice("RECONCILIATION_STRATEGY", STRATEGY_STRICT, (STRATEGY_STRICT, STRATEGY_WATERFALL))
    )
    INSTALLMENT_ALLOCATION: str = Field(
        default_factory=lambda: _pick_choice("INSTALLMENT_ALLOCATION", ALLOCATION_MANUAL, (ALLOCATION_MANUAL, ALLOCATION_FIFO))
    )

    # Loader cache window in seconds (0 disables caching)
    LOADER_CACHE_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LOADER_CACHE_SECONDS", "0") or 0))
    UPCOMING_HORIZON_MONTHS: int = Field(default_factory=lambda: int(os.getenv("UPCOMING_HORIZON_MONTHS", "6") or 6))

    # Printed documents
    SHOP_NAME: str = Field(default_factory=lambda: os.getenv("SHOP_NAME", "AL-HAMD TRADERS"))
    SHOP_ADDRESS: str = Field(default_factory=lambda: os.getenv("SHOP_ADDRESS", "Railway Road Chowk Shamah, Sargodha"))
    SHOP_CONTACT: str = Field(default_factory=lambda: os.getenv("SHOP_CONTACT", "0300-1234567"))
    CURRENCY: str = Field(default_factory=lambda: os.getenv("CURRENCY", "Rs"))

settings = Settings()

def reload_settings():
    """Reload settings from .env."""
    load_dotenv(dotenv_path=env_path, override=True)
    global settings
    settings = Settings()
    return settings
