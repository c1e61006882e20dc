from dataclasses import dataclass, field
from typing import List, Optional
from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param
from backend.auth.constants import COOKIE_NAME, USER_ID_CLAIMS, logger
from backend.auth.utils import decode_token
from backend.config.admin_config import admin_config
from backend.payments.exceptions import Forbidden, Unauthorized


@dataclass(frozen=True)
class Identity:
    user_id: str
    roles: List[str] = field(default_factory=list)


def _credential_from_request(request: Request) -> Optional[str]:
    cookie_token = request.cookies.get(COOKIE_NAME)
    if cookie_token:
        return cookie_token
    scheme, param = get_authorization_scheme_param(request.headers.get("Authorization"))
    if scheme.lower() == "bearer" and param:
        return param
    return None


def resolve_identity(token: str) -> Identity:
    claims = decode_token(token)
    if not claims:
        raise Unauthorized("Invalid or expired session")
    user_id = next((claims[c] for c in USER_ID_CLAIMS if claims.get(c)), None)
    if not user_id:
        raise Unauthorized("Session carries no user id")
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Identity(user_id=str(user_id), roles=list(roles))


class Authentication:
    """
    Resolves the caller from the session cookie or a Bearer header.

    required=True: missing or invalid credential -> Unauthorized.
    required=False: missing credential -> None (anonymous), invalid credential -> Unauthorized.
    """

    def __init__(self, required: bool = True):
        self.required = required

    async def __call__(self, request: Request) -> Optional[Identity]:
        token = _credential_from_request(request)
        if not token:
            if self.required:
                logger.warning("auth.credential_missing", extra={"path": request.url.path})
                raise Unauthorized("Authentication required")
            return None

        try:
            identity = resolve_identity(token)
        except Unauthorized:
            logger.warning("auth.credential_invalid", extra={"path": request.url.path})
            raise

        request.state.user_id = identity.user_id
        return identity


require_identity = Authentication(required=True)
optional_identity = Authentication(required=False)


class RequireRole(Authentication):

    def __init__(self, role: str, allowlist_ips: Optional[List[str]] = None):
        super().__init__(required=True)
        self.role = role
        self.allowlist_ips = set(allowlist_ips or [])

    async def __call__(self, request: Request) -> Identity:
        identity = await super().__call__(request)
        if self.role not in identity.roles:
            logger.warning("auth.role_missing", extra={"path": request.url.path, "user_id": identity.user_id, "role": self.role})
            raise Forbidden("Insufficient role")
        if self.allowlist_ips:
            client_ip = request.client.host if request.client else None
            if client_ip not in self.allowlist_ips:
                logger.warning("auth.ip_not_allowlisted", extra={"path": request.url.path, "ip_address": client_ip})
                raise Forbidden("Address not allowed")
        return identity


require_admin = RequireRole(admin_config.ADMIN_ROLE, admin_config.ADMIN_ALLOWLIST_IPS)
