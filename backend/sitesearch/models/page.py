from typing import TYPE_CHECKING

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from .site import Site


class Page(SQLModel, table=True):
    """A crawled page. ``path`` is site-relative, "/" for the root."""

    __tablename__ = "page"
    __table_args__ = (UniqueConstraint("site_id", "path"),)

    id: int | None = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", nullable=False, ondelete="CASCADE", index=True)
    path: str = Field(max_length=2048)
    code: int
    content: str = Field(sa_type=Text)
    site: "Site" = Relationship(back_populates="pages")
