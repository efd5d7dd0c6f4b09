"""
API Routes
"""
from fastapi import APIRouter

from sms_bot.api.routes.sms import router as sms_admin_router
from sms_bot.api.webhooks.sms import router as sms_webhook_router
from sms_bot.api.webhooks.telebirr import router as telebirr_router

router = APIRouter()

router.include_router(sms_webhook_router, prefix="/sms", tags=["Webhooks"])
router.include_router(sms_admin_router, prefix="/sms", tags=["SMS Admin"])
router.include_router(telebirr_router, prefix="/payments/telebirr", tags=["Payments"])
