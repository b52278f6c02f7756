from fastapi import APIRouter
from app.api.catalog import router as catalog_router
from app.api.chat import router as chat_router

router = APIRouter()
router.include_router(chat_router)
router.include_router(catalog_router)
