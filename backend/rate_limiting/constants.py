import asyncio
from typing import Dict, Optional
from backend.config.settings import config_settings
from backend.common.logging_setup import get_logger

logger = get_logger("marketplace.rate_limiting")

DEFAULT_LIMIT = config_settings.IP_RATE_LIMIT          # requests per ip per window
DEFAULT_WINDOW = config_settings.IP_RATE_WINDOW        # seconds
RATE_LIMIT_PREFIX = "rl"    # redis key prefix
REDIS_TIMEOUT_SECONDS = 0.5
FAIL_OPEN = True                  # if redis is unavailable, allow requests (True) or deny (False)
USE_IN_MEMORY_FALLBACK = True     # allow simple local fallback when redis fails (not distributed)

# verification attempts per payment reference
VERIFY_MAX_ATTEMPTS = config_settings.VERIFY_MAX_ATTEMPTS
VERIFY_WINDOW_SECONDS = config_settings.VERIFY_WINDOW_SECONDS

_script_sha: Dict[str, Optional[str]] = {}
_redis_lock = asyncio.Lock()


_in_memory_counters = {}
_in_memory_lock = asyncio.Lock()
