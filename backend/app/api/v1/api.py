"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from app.api.v1 import adaptive, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(adaptive.router, prefix="/adaptive", tags=["adaptive"])
