# feedesk/api/v1/router.py
# Registers all endpoint routers under /api/v1

from fastapi import APIRouter

from feedesk.api.v1.endpoints import (
    fee_ledger,
    gateway,    # gateway adapter webhook, HMAC-authenticated
)

api_router = APIRouter()

api_router.include_router(fee_ledger.router)
api_router.include_router(gateway.router)
