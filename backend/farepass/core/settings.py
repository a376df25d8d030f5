from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "FarePass"
    DATABASE_URL: str = "sqlite:///./farepass.db"
    SQL_ECHO: bool = False
    SQLITE_BUSY_TIMEOUT_MS: int = 5000
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Credential Config
    ALGORITHM: str = "RS256"
    TOKEN_ISSUER: str = "farepass-backend"
    CREDENTIAL_TTL_SECONDS: int = 60 * 60 * 12
    SERVER_PRIVATE_KEY: str = ""
    SERVER_PUBLIC_KEY: str = ""
    KEYS_DIR: str = "./keys"

    # Fare Config (minor units)
    PRICE_PER_SESSION: int = 300
    DAILY_CAP: int = 800

    DEBUG_ENDPOINTS: bool = False

    model_config = SettingsConfigDict(env_file=".env")

settings = Settings()
