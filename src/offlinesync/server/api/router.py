"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from offlinesync.server.api import health, records

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(records.router)
