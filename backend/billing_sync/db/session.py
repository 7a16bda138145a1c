"""Engine and sessions for the billing database"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from billing_sync.core.config import settings
from billing_sync.models.base import Base

# The webhook runs without an end-user session, so this engine connects with the
# privileged service role that is not subject to per-row access policies.
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Request-scoped session; the webhook service decides when to commit"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing billing tables. Alembic is the normal path; see DB_AUTO_CREATE."""
    import billing_sync.models  # noqa: F401  registers every table with Base.metadata
    Base.metadata.create_all(bind=engine)
