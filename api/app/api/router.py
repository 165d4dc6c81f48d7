from fastapi import APIRouter

from app.api.routes import health, materialized_views, statistics

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(statistics.router, prefix="/posts/statistics", tags=["statistics"])
api_router.include_router(
    materialized_views.router,
    prefix="/private/materialized-views",
    tags=["admin - materialized views"],
)
