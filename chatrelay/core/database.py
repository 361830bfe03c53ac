# chatrelay/core/database.py

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from chatrelay.models.base import Base
from chatrelay.core.config import DATABASE_URL


def make_engine(database_url: str = DATABASE_URL) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # the producer task writes from a different thread than the request
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    """
    Yields a database session for FastAPI dependencies.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
