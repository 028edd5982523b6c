from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from expirekit.core.config import settings

def get_engine(url: str = None) -> Engine:
    return create_engine(url or settings.DATABASE_URL, pool_pre_ping=True)
