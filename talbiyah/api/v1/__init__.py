"""
API v1 routes.
"""

from fastapi import APIRouter

from talbiyah.api.v1 import curriculum, overview, surahs, verification

router = APIRouter()

router.include_router(curriculum.router, prefix="/curriculum", tags=["Curriculum"])
router.include_router(verification.router, tags=["Verification"])
router.include_router(surahs.router, prefix="/surahs", tags=["Surahs"])
router.include_router(overview.router, prefix="/students", tags=["Overview"])
