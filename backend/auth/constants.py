from backend.common.logging_setup import get_logger
from backend.config.settings import config_settings

logger = get_logger("marketplace.auth")

COOKIE_NAME = config_settings.SESSION_COOKIE_NAME
# claims that may carry the buyer id, first hit wins
USER_ID_CLAIMS = ("sub", "userId", "user_id")
