from fastapi import APIRouter

from fitstream.api.routes import billing

api_router = APIRouter()
api_router.include_router(billing.router)
