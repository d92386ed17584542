from fastapi import APIRouter
from clinic_engine.api.v1.scheduling import routes as scheduling

api_router = APIRouter()
api_router.include_router(scheduling.router, tags=["scheduling"])
