"""MetricSync — Database Engine & Session Factory."""

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy import text
from sqlalchemy.engine import make_url
from metricsync.config import settings
from metricsync.core.logging import get_logger

# Register table models on SQLModel.metadata
from metricsync.models import metric_models  # noqa: F401

logger = get_logger("database")

db_url = settings.effective_database_url


def describe_url(url: str) -> str:
    """Backend name plus the URL with any password hidden, for logging."""
    parsed = make_url(url)
    return f"{parsed.get_backend_name()} ({parsed.render_as_string(hide_password=True)})"


logger.info(f"Database backend: {describe_url(db_url)}")

# ── Build engine kwargs ──
engine_kwargs: dict = {"echo": False}

if db_url.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs["pool_pre_ping"] = True
    engine_kwargs["pool_size"] = 5
    engine_kwargs["max_overflow"] = 10
    engine_kwargs["pool_recycle"] = 300

engine = create_engine(db_url, **engine_kwargs)


def test_connection() -> bool:
    """Test the database connection with SELECT 1."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            conn.commit()
        logger.info("Database connection test: SUCCESS")
        return True
    except Exception as e:
        logger.error(f"Database connection test: FAILED — {e}")
        return False


def init_db() -> None:
    """Create all tables."""
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ready")


def get_session():
    """Dependency — yields a DB session."""
    with Session(engine) as session:
        yield session
