from fastapi import APIRouter

from app.api.routes import applications, files, holders, utils

api_router = APIRouter()
api_router.include_router(utils.router)
api_router.include_router(files.router)
api_router.include_router(applications.router)
api_router.include_router(holders.router)
