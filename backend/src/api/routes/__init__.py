from fastapi import APIRouter

from api.routes.queue import router as queue_router

api_router = APIRouter()
api_router.include_router(queue_router)
