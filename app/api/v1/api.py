from fastapi import APIRouter

from app.api.v1.routers import webhooks, sync

# API маршруты
api_router = APIRouter()
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["NuvemShop Webhooks"])
api_router.include_router(sync.router, prefix="/sync", tags=["NuvemShop Sync"])
