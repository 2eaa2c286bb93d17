from fastapi import APIRouter

from socialbridge.api.v1.endpoints.auth import router as auth_router
from socialbridge.api.v1.endpoints.connections import router as connections_router
from socialbridge.api.v1.endpoints.health import router as health_router


api_v1_router = APIRouter()
api_v1_router.include_router(health_router)
api_v1_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_v1_router.include_router(connections_router, prefix="/connections", tags=["connections"])
