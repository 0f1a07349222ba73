from datetime import datetime, timezone

from sqlalchemy import func
from sqlmodel import Session, select

from sitesearch.models import (
    Lemma,
    Page,
    Site,
    SiteStatistics,
    SiteStatus,
    StatisticsResponse,
    TotalStatistics,
)


def epoch_millis(value: datetime) -> int:
    # SQLite 返回无时区的值, 按 UTC 处理
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def get_statistics(session: Session) -> StatisticsResponse:
    sites = session.exec(select(Site).order_by(Site.id)).all()
    page_counts = dict(
        session.exec(select(Page.site_id, func.count(Page.id)).group_by(Page.site_id)).all()
    )
    lemma_counts = dict(
        session.exec(select(Lemma.site_id, func.count(Lemma.id)).group_by(Lemma.site_id)).all()
    )

    per_site = [
        SiteStatistics(
            url=site.url,
            name=site.name,
            status=site.status.value,
            # 与前端约定: 毫秒时间戳
            status_time=epoch_millis(site.status_time),
            last_error=site.last_error,
            page_count=page_counts.get(site.id, 0),
            lemma_count=lemma_counts.get(site.id, 0),
        )
        for site in sites
    ]
    total = TotalStatistics(
        total_sites=len(sites),
        total_pages=sum(page_counts.values()),
        total_lemmas=sum(lemma_counts.values()),
        any_site_indexing=any(site.status == SiteStatus.INDEXING for site in sites),
    )
    return StatisticsResponse(total=total, per_site=per_site)
