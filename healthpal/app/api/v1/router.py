"""
API v1 Router.

Aggregates all v1 endpoint routers.
"""

from fastapi import APIRouter
from healthpal.app.api.v1.endpoints import (
    auth,
    sponsorships,
    donations,
    payments,
    consultations,
    calls,
    notifications,
)

router = APIRouter()

router.include_router(auth.router)
router.include_router(sponsorships.router)
router.include_router(donations.router)
router.include_router(payments.router)
router.include_router(consultations.router)
router.include_router(calls.video_router)
router.include_router(calls.audio_router)
router.include_router(notifications.router)
