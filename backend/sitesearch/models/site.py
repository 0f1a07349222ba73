import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from .page import Page


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SiteStatus(str, enum.Enum):
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


# 共享属性
class SiteBase(SQLModel):
    url: str = Field(max_length=255, unique=True, index=True)
    name: str = Field(max_length=255)


# 数据库模型
class Site(SiteBase, table=True):
    __tablename__ = "site"

    id: int | None = Field(default=None, primary_key=True)
    status: SiteStatus = Field(default=SiteStatus.INDEXING)
    # 统一存 UTC; SQLite 读回时不带时区
    status_time: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    last_error: str | None = Field(default=None)
    pages: list["Page"] = Relationship(back_populates="site")
