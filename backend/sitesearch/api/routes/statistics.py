from typing import Any

from fastapi import APIRouter

from sitesearch.api.deps import SessionDep
from sitesearch.models import StatisticsResponse
from sitesearch.services.statistics import get_statistics

router = APIRouter()


@router.get("/statistics", response_model=StatisticsResponse)
def statistics(session: SessionDep) -> Any:
    return get_statistics(session)
