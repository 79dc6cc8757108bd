"""Process-wide connections: one SQLAlchemy engine and one Redis pool."""

import logging

import redis
import redis.exceptions
from redis.connection import ConnectionPool
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from shortlink.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    # SQLite sessions are handed between request threads and the dispatcher
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def build_redis_client(host: str, port: int, db: int = 0) -> redis.Redis:
    pool = ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=50,
        socket_connect_timeout=2,
        socket_timeout=2,
        socket_keepalive=True,
        retry_on_timeout=True,
    )
    return redis.Redis(connection_pool=pool)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
redis_client = build_redis_client(settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_redis_connection() -> bool:
    """Redis only accelerates; when it is down the service keeps answering from the store."""
    try:
        redis_client.ping()
    except redis.exceptions.RedisError as e:
        logger.warning(f"Redis unreachable at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}. Running without cache.")
        return False
    logger.info("Redis connection verified")
    return True


def verify_database_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False
    logger.info("Database connection verified")
    return True
