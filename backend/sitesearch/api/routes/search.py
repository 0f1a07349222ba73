from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from sitesearch.api.deps import SearchEngineDep
from sitesearch.models import SearchResponse

router = APIRouter()


@router.get("/search", response_model=SearchResponse)
def search(
    search_engine: SearchEngineDep,
    query: str = "",
    site: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
) -> Any:
    response = search_engine.search(query, site, offset, limit)
    if not response.success:
        return JSONResponse(status_code=400, content=response.model_dump())
    return response
