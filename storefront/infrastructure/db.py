from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from storefront.core_settings import get_settings
from storefront.domain.models import Base

settings = get_settings()

def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are handed across FastAPI's threadpool
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, future=True, pool_pre_ping=True, connect_args=connect_args)

engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_engine():
    return engine

def init_models():
    Base.metadata.create_all(engine)
