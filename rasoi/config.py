from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "rasoi"
    JWT_EXP_MIN: int = 12*60
    LOG_LEVEL: str = "INFO"

    # payment gateway shared secrets
    PAYMENT_KEY_SECRET: str
    PAYMENT_WEBHOOK_SECRET: str

    # pricing
    TAX_RATE: float = 0.05
    DELIVERY_FEE_MODE: str = "FLAT"  # FLAT | DISTANCE
    DELIVERY_FLAT_FEE: float = 49.0
    DELIVERY_RATE_PER_KM: float = 6.0
    ORIGIN_LAT: float = 26.1555
    ORIGIN_LON: float = 83.7919

    PAYMENT_PENDING_TTL_MIN: int = 30
    NOTIFICATION_LOG_LIMIT: int = 50
    STORE_RETRY_ATTEMPTS: int = 3
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
