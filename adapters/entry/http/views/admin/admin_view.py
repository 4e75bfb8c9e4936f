from __future__ import annotations

from fastapi import APIRouter

from adapters.entry.http.views.admin.admin_paymaster_view import router as paymaster_router

router = APIRouter()
router.include_router(paymaster_router)
