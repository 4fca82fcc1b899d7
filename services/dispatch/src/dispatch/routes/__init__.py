"""Router aggregation."""

from fastapi import APIRouter

from services.dispatch.src.dispatch.routes.issues import router as issues_router
from services.dispatch.src.dispatch.routes.workers import router as workers_router

api_router = APIRouter()
api_router.include_router(issues_router, prefix="/api/issues", tags=["issues"])
api_router.include_router(workers_router, prefix="/api/workers", tags=["workers"])
