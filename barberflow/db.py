# barberflow/db.py
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session
from .settings import load_settings

_settings = load_settings()

def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # in-memory databases must share a single connection across threads
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)
    return create_engine(database_url, echo=False, pool_pre_ping=True)

engine = make_engine(_settings.database_url)

def init_db(bind=None):
    bind = bind or engine
    if str(bind.url).startswith("sqlite"):
        with bind.connect() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    # registers Shop, User, Barber, Service, Client, Appointment on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(bind)

def get_session():
    with Session(engine) as session:
        yield session
