from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from clinic_engine.core.config import settings


def build_engine(database_url: str):
    """Create an engine; SQLite needs cross-thread access for the threadpool"""
    if "sqlite" in database_url.lower():
        return create_engine(
            database_url,
            echo=settings.DEBUG,
            connect_args={"check_same_thread": False, "timeout": 30}
        )
    return create_engine(
        database_url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.DEBUG
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

# Base model
Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables"""
    # Registers the scheduling tables on Base.metadata
    from clinic_engine.domain.scheduling import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def close_db():
    """Close database connections"""
    engine.dispose()
