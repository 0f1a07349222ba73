from fastapi import APIRouter

from sitesearch.api.routes import indexing, search, statistics, utils

api_router = APIRouter()
api_router.include_router(utils.router)
api_router.include_router(indexing.router, tags=["indexing"])
api_router.include_router(search.router, tags=["search"])
api_router.include_router(statistics.router, tags=["statistics"])
