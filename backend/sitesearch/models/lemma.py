from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Lemma(SQLModel, table=True):
    """
    A site-scoped lemma.

    ``frequency`` is the number of distinct pages of the site containing the
    lemma, not the number of occurrences.
    """

    __tablename__ = "lemma"
    __table_args__ = (UniqueConstraint("site_id", "lemma"),)

    id: int | None = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", nullable=False, ondelete="CASCADE", index=True)
    lemma: str = Field(max_length=255, index=True)
    frequency: int = Field(default=0)
