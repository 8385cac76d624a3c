from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import settings

DATABASE_URL = settings.database_url

engine_kwargs = {"pool_pre_ping": True}  # Verify connections before using them
if DATABASE_URL.startswith("postgresql"):
    engine_kwargs.update(pool_size=10, max_overflow=20)

# Create engine with connection pooling
engine = create_engine(DATABASE_URL, **engine_kwargs)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
