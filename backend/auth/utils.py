from typing import Any, Dict, Optional
from jose import jwt, JWTError
from backend.config.settings import config_settings


def decode_token(token:str) -> Optional[Dict[str, Any]]:
    """To verify the signature , expiration and user claims of token"""
    try:
        return jwt.decode(
            token,
            key=config_settings.JWT_SECRET,
            algorithms=[config_settings.JWT_ALGO],
        )
    except JWTError:
        return None
