# storage/db.py
from pathlib import Path
from typing import Optional

from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.kv_entry  # noqa: F401


def make_engine(db_path: Optional[Path] = None):
    path = Path(db_path or DB_PATH)
    # Sessions are opened from asyncio.to_thread workers.
    return create_engine(
        f"sqlite:///{path.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


_engine = make_engine()


def init_db(engine=None):
    target = engine or _engine
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(target)


def get_engine():
    return _engine


def get_session() -> Session:
    return Session(_engine)
