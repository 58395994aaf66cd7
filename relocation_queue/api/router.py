from fastapi import APIRouter

from relocation_queue.api.routes import health, manual, queue

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(queue.router, prefix="/queue", tags=["queue"])
api_router.include_router(manual.router, prefix="/manual", tags=["manual"])
