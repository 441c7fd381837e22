# backend/repomap/db.py
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from .config import get_settings


def make_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # pipeline threads share the engine
        connect_args = {"check_same_thread": False, "timeout": 30}
    eng = create_engine(database_url, echo=False, connect_args=connect_args)

    if eng.dialect.name == "sqlite":
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


# create engine (file-based sqlite by default)
engine = make_engine(get_settings().database_url)


def init_db(eng=None):
    SQLModel.metadata.create_all(eng or engine)
