from fastapi import APIRouter

from .endpoints import conditions, health, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(conditions.router)
router.include_router(observability.router)
