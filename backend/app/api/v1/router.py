from fastapi import APIRouter

from app.api.v1 import admin, auth, escalations, tasks

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
api_router.include_router(escalations.task_router, prefix="/tasks", tags=["escalations"])
api_router.include_router(escalations.router, prefix="/escalations", tags=["escalations"])
