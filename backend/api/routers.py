from fastapi import APIRouter
from backend.api.__init__ import version_prefix
from backend.payments.routes import payments_router, payments_admin_router
from backend.payments.webhooks import webhooks_router
from backend.common.routes import home_router



public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(payments_admin_router, prefix="/payments", tags=["payments-admin"])
