from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.config.table_names import TableNames
from src.models.base import Base, TimeStamp


class Wedding(Base, TimeStamp):
    """The tenant. Every other row hangs off exactly one wedding."""

    __tablename__ = TableNames.WEDDINGS.value

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    couple_display_name: Mapped[str] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Wedding {self.name}>"
