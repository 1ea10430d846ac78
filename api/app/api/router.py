from fastapi import APIRouter

from app.api.routes import dashboard, health, matchings, memos, postings, settlements

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(matchings.router, prefix="/matchings", tags=["matchings"])
api_router.include_router(memos.router, tags=["memos"])
api_router.include_router(postings.router, tags=["settlements"])
api_router.include_router(settlements.router, prefix="/settlements", tags=["settlements"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
