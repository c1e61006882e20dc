from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    ENABLE_ADMIN: bool = False     # default False -> admin routes not mounted
    ADMIN_ROLE: str = "admin"
    ADMIN_ALLOWLIST_IPS: List[str] = []  # optional
    SERVICE_NAME: str = "marketplace-payments"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
