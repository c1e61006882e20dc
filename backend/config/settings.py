from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL : str
    DB_CREATE_ALL : bool = False
    JWT_SECRET :str
    JWT_ALGO : str = "HS256"
    SESSION_COOKIE_NAME : str = "token"

    PAYSTACK_SECRET_KEY : str
    PAYSTACK_BASE_URL : str = "https://api.paystack.co"
    GATEWAY_TIMEOUT_SECONDS : float = 8.0
    GATEWAY_CB_FAILURE_THRESHOLD : int = 5
    GATEWAY_CB_RECOVERY_SECONDS : float = 30.0
    CURRENCY_MINOR_UNIT_FACTOR : int = 100
    AMOUNT_TOLERANCE_MINOR : int = 1

    VERIFY_MAX_ATTEMPTS : int = 5
    VERIFY_WINDOW_SECONDS : int = 60
    WEBHOOK_MAX_ATTEMPTS : int = 10
    WEBHOOK_WINDOW_SECONDS : int = 60
    FULFILLMENT_TIMEOUT_SECONDS : float = 15.0
    ORDER_NUMBER_MAX_ATTEMPTS : int = 3

    AUDIT_QUEUE_MAXSIZE : int = 1000
    AUDIT_WORKERS : int = 1

    REDIS_HOST : str = "localhost"
    REDIS_PORT : int = 6379
    REDIS_DB : int = 0
    REDIS_PASSWORD : Optional[str] = None
    IP_RATE_LIMIT_ENABLED : bool = True
    IP_RATE_LIMIT : int = 20
    IP_RATE_WINDOW : int = 60

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
