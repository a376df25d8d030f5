from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from .settings import settings


def _set_sqlite_busy_timeout(dbapi_connection, connection_record) -> None:
    # Concurrent session ends wait for the writer instead of failing with "database is locked"
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {settings.SQLITE_BUSY_TIMEOUT_MS};")
    cursor.close()

def build_engine(url: str, echo: bool = False) -> Engine:
    is_sqlite = url.startswith("sqlite")
    # FastAPI runs sync endpoints in a threadpool, so SQLite connections cross threads
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    new_engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True, echo=echo)
    if is_sqlite:
        event.listen(new_engine, "connect", _set_sqlite_busy_timeout)
    return new_engine

engine = build_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)

def create_db_and_tables():
    """
    Creates the devices and sessions tables. Models must be imported first.
    """
    SQLModel.metadata.create_all(engine)

def get_session():
    with Session(engine) as session:
        yield session
