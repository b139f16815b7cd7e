from __future__ import annotations

from src.db.models import Base
from src.db.session import get_engine


def init_db(url: str | None = None) -> None:
    # Creates missing tables only; existing data is left alone.
    engine = get_engine(url)
    Base.metadata.create_all(bind=engine)
