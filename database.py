from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from config import DATABASE_URL, SQLITE_BUSY_TIMEOUT


# ── Engine ───────────────────────────────────────────────────
def build_engine(url: str):
    """
    Create an engine for `url`.

    SQLite gets check_same_thread=False (FastAPI runs sync handlers on a
    thread pool), enforced foreign keys, and BEGIN IMMEDIATE transactions so
    that two writers never interleave a read-then-write on the same rows.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # hand transaction control to the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(DATABASE_URL)

# ── Session factory ──────────────────────────────────────────
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ── Base class ───────────────────────────────────────────────
# All models inherit from this
Base = declarative_base()


# ── Helper: get a DB session (use with `with` or dependency injection) ─
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ── Create all tables on startup ─────────────────────────────
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
