from fastapi import APIRouter
from tickethub.api.v1.routes.auth import router as auth_router
from tickethub.api.v1.routes.public import router as public_router
from tickethub.api.v1.routes.bookings import router as bookings_router
from tickethub.api.v1.routes.webhooks import router as webhooks_router
from tickethub.api.v1.routes.admin import router as admin_router
from tickethub.api.v1.routes.gnpl import router as gnpl_router
from tickethub.api.v1.routes.reconciliation import router as reconciliation_router
from tickethub.api.v1.routes.cash import router as cash_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(public_router)
api_router.include_router(bookings_router)
api_router.include_router(webhooks_router)
api_router.include_router(admin_router)
api_router.include_router(gnpl_router)
api_router.include_router(reconciliation_router)
api_router.include_router(cash_router)
