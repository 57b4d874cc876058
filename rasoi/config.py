from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "rasoi"
    JWT_EXP_MIN: int = 12*60
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]
    # bounded transactions: lock wait, execution ceiling, ceiling for bulk item adds
    TX_MAX_WAIT_MS: int = 5000
    TX_TIMEOUT_MS: int = 10000
    TX_LONG_TIMEOUT_MS: int = 15000
    ORDER_NUMBER_MAX_ATTEMPTS: int = 10
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
