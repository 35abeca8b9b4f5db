"""
API v1 Router
"""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    email_templates, monitoring, referrers, rewards, settings, statistics, webhooks
)

api_router = APIRouter()

api_router.include_router(monitoring.router, tags=["monitoring"])
api_router.include_router(webhooks.router)
api_router.include_router(rewards.router)
api_router.include_router(referrers.router)
api_router.include_router(settings.router)
api_router.include_router(email_templates.router)
api_router.include_router(statistics.router)
