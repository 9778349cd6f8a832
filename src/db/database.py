"""Generate database session"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from src.core.config import get_settings
from src.db.schema import Base


def make_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """Create the engine and ensure all tables are created"""
    url = database_url or get_settings().database_url
    engine = create_engine(url, echo=echo)
    Base.metadata.create_all(bind=engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)
