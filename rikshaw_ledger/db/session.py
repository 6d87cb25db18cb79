from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import OperationalError
from rikshaw_ledger.core import config
from rikshaw_ledger.db.models import Base
import logging

logger = logging.getLogger(__name__)

def _connect_args(db_url: str) -> dict:
    connect_args = {}
    if "sqlite" in db_url:
        connect_args["check_same_thread"] = False
    return connect_args

engine = create_engine(
    config.settings.DB_URL,
    connect_args=_connect_args(config.settings.DB_URL),
    pool_pre_ping=True # Helps with MySQL connection drops
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def reset_engine(db_url: str = None):
    """Re-create the engine and session factory. Useful after settings change."""
    global engine, SessionLocal
    db_url = db_url or config.settings.DB_URL

    engine = create_engine(
        db_url,
        connect_args=_connect_args(db_url),
        pool_pre_ping=True
    )
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal

def check_connection():
    """Check if the database connection is working."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"DB Connection check failed: {e}")
        return False

def create_mysql_db_if_missing():
    """
    Checks if the MySQL database exists, and creates it if not.
    This requires parsing the DB_URL to connect to the server without a DB first.
    """
    if "mysql" not in config.settings.DB_URL:
        return

    try:
        with engine.connect():
            pass
    except OperationalError as e:
        if "Unknown database" not in str(e):
            raise
        logger.info("Database does not exist. Attempting to create it...")
        from sqlalchemy.engine.url import make_url
        url = make_url(config.settings.DB_URL)
        db_name = url.database
        server_url = url.set(database="")
        try:
            tmp_engine = create_engine(server_url)
            with tmp_engine.connect() as conn:
                conn.execute(text(f"CREATE DATABASE IF NOT EXISTS {db_name}"))
                logger.info(f"Database '{db_name}' created successfully.")
        except Exception as create_error:
            logger.error(f"Failed to create database: {create_error}")
            raise e

# (table, column, DDL type) added after the first release
_ADDED_COLUMNS = [
    ("installment_plans", "showroom_commission", "NUMERIC(12, 2) DEFAULT 0"),
    ("installment_plans", "is_commission_paid", "BOOLEAN DEFAULT 0"),
    ("installment_plans", "total_paid_monthly_installments", "NUMERIC(12, 2) DEFAULT 0"),
    ("installment_payments", "installment_number", "INTEGER DEFAULT NULL"),
]

def run_migrations(bind=None):
    """
    Manual migrations to ensure DB schema is up to date.
    """
    bind = bind or engine
    for table, column, ddl in _ADDED_COLUMNS:
        with bind.connect() as conn:
            try:
                # Attempt to select the column. If it fails, it doesn't exist.
                conn.execute(text(f"SELECT {column} FROM {table} LIMIT 1"))
                continue
            except Exception:
                conn.rollback()
            try:
                logger.info(f"Migrating: Adding {column} to {table} table.")
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
                conn.commit()
            except Exception as e:
                logger.error(f"Migration of {table}.{column} failed: {e}")

def init_db(bind=None):
    bind = bind or engine
    if bind is engine:
        create_mysql_db_if_missing()
    Base.metadata.create_all(bind=bind)
    run_migrations(bind)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
