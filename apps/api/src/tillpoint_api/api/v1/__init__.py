from fastapi import APIRouter

from .endpoints import loyalty

router = APIRouter()
router.include_router(loyalty.router)
