from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from sitesearch.api.deps import IndexingServiceDep
from sitesearch.models import CrawlStartResult, CrawlStopResult, PageIndexResult

router = APIRouter()


@router.get("/startIndexing", response_model=CrawlStartResult)
def start_indexing(service: IndexingServiceDep) -> Any:
    """
    启动所有配置站点的全量索引。
    """
    result = service.start_crawl()
    if not result.started:
        return JSONResponse(status_code=400, content=result.model_dump())
    return result


@router.get("/stopIndexing", response_model=CrawlStopResult)
def stop_indexing(service: IndexingServiceDep) -> Any:
    """
    请求停止当前索引，不等待任务结束。
    """
    result = service.stop_crawl()
    if not result.stopped:
        return JSONResponse(status_code=400, content=result.model_dump())
    return result


@router.post("/indexPage", response_model=PageIndexResult)
def index_page(url: str, service: IndexingServiceDep) -> Any:
    """
    重新索引单个页面。
    """
    result = service.index_single_page(url)
    if not result.success:
        return JSONResponse(status_code=400, content=result.model_dump())
    return result
