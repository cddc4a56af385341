from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str = "sqlite:///./cafepos.db"
    JWT_ISS: str = "cafepos"
    JWT_EXP_MIN: int = 12*60
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    # billing / checkout
    SETTLEMENT_EPSILON: Decimal = Decimal("0.01")
    DEFAULT_CGST_RATE: Decimal = Decimal("2.5")
    DEFAULT_SGST_RATE: Decimal = Decimal("2.5")
    CONFIRM_TOKEN_TTL_SEC: int = 120
    BLOCK_TURNOVER_WITH_UNPAID: bool = False
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
