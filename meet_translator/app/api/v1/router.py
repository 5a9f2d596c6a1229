from fastapi import APIRouter
from meet_translator.app.api.v1.endpoints import stream, health

api_router = APIRouter()
api_router.include_router(stream.router, tags=["stream"])
api_router.include_router(health.router, tags=["health"])
