from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database settings
    DB_URL: Optional[str] = None  # Optional full DB URL
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "salary_advance"

    # API settings
    API_VERSION: str = "v1"
    SERVICE_NAME: str = "Salary Advance Service"
    DEBUG: bool = False

    # JWT settings
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # M-Pesa Daraja settings
    MPESA_BASE_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_INITIATOR_NAME: str = ""
    MPESA_SECURITY_CREDENTIAL: str = ""
    MPESA_STK_PASSWORD: str = ""
    MPESA_STK_TIMESTAMP: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_BALANCE_CALLBACK_URL: str = ""
    MPESA_QUEUE_TIME_OUT_URL: str = ""
    MPESA_TIMEOUT_SECONDS: float = 30.0

    # Notification settings
    SMS_API_URL: str = "https://sms.textsms.co.ke/api/services/sendsms/"
    SMS_API_KEY: str = ""
    SMS_PARTNER_ID: str = ""
    SMS_SHORTCODE: str = "TextSMS"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 465
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_SENDER: str = "no-reply@example.com"

    # Reconciliation settings
    COUNTRY_CODE: str = "254"
    STALE_PENDING_MINUTES: int = 60
    BALANCE_POLL_MINUTES: int = 5
    STALE_SWEEP_MINUTES: int = 30
    SCHEDULER_ENABLED: bool = True

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "standard"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        validate_default = True

    @property
    def async_db_url(self) -> str:
        """Get asynchronous database URL."""
        if self.DB_URL:
            return self.DB_URL
        return f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns cached Settings instance to avoid reloading .env file on every access
    """
    return Settings()


settings = get_settings()
