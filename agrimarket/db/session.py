from sqlalchemy import func
from sqlmodel import SQLModel, create_engine, Session, select
from agrimarket.core.config import settings

# check_same_thread is needed for SQLite, remove for PostgreSQL
connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

def get_session():
    with Session(engine) as session:
        yield session

def create_db_and_tables(bind=None):
    # Import models so every table is registered on the metadata
    import agrimarket.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)

def paginate(session: Session, statement, page: int, limit: int):
    """Run ``statement`` for one page. Returns (rows, total)."""
    total = session.exec(select(func.count()).select_from(statement.subquery())).one()
    rows = session.exec(statement.offset((page - 1) * limit).limit(limit)).all()
    return rows, total
