# hidoc/models/__init__.py
from hidoc.db.session import Base, engine, SessionLocal

# Import model modules so SQLAlchemy registers all mappers.
from . import param_target  # noqa: F401
from . import health_data  # noqa: F401
from . import message  # noqa: F401


def init_db() -> None:
    """Create tables if they don't exist."""
    Base.metadata.create_all(bind=engine)
