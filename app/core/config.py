from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGO: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    LOG_LEVEL: str = "INFO"
    DB_ECHO: bool = False
    DB_CONNECT_RETRIES: int = 5
    CURRENCY_SYMBOL: str = "$"

    class Config:
        env_file = ".env"

settings = Settings()
