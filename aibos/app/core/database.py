from collections.abc import Generator

from sqlalchemy import JSON, create_engine, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from aibos.app.core.config import settings

_connect_args = (
    {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
)

engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def next_sequence(db: Session, column, prefix: str, *criteria, width: int = 6) -> str:
    """Next ``prefix`` + zero-padded number after the highest one already used.

    Numbers are padded to a fixed width, so the lexical maximum is also the
    numeric one. Deleted rows leave gaps that are never reused.
    """
    highest = (
        db.query(func.max(column)).filter(column.like(f"{prefix}%"), *criteria).scalar()
    )
    last = 0
    if highest:
        suffix = highest[len(prefix):]
        last = int(suffix) if suffix.isdigit() else 0
    return f"{prefix}{last + 1:0{width}d}"
