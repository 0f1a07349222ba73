from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


# index 是 SQL 保留字
class IndexEntry(SQLModel, table=True):
    __tablename__ = "search_index"
    __table_args__ = (UniqueConstraint("page_id", "lemma_id"),)

    id: int | None = Field(default=None, primary_key=True)
    page_id: int = Field(foreign_key="page.id", nullable=False, ondelete="CASCADE", index=True)
    lemma_id: int = Field(foreign_key="lemma.id", nullable=False, ondelete="CASCADE", index=True)
    # 该词元在页面中的出现次数
    rank: float
