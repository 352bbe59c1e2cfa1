"""
Database configuration for the rankscout storage context.

Credentials come from the environment (``POSTGRES_*``), or a complete
SQLAlchemy URL in ``DATABASE_URL`` which takes precedence.
"""

import os
from dataclasses import dataclass
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from loguru import logger
from psycopg2 import sql

# Load environment variables from .env file
load_dotenv()


@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "rankscout"
    url: Optional[str] = None

    @classmethod
    def from_env(cls, name: Optional[str] = None) -> "DatabaseConfig":
        """Create DatabaseConfig from environment variables."""
        url = os.getenv("DATABASE_URL")
        if url:
            return cls(url=url)

        return cls(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", ""),
            name=name or os.getenv("POSTGRES_DB", "rankscout"),
        )

    @property
    def is_postgres(self) -> bool:
        return self.url is None or self.url.startswith("postgresql")

    @property
    def connection_string(self) -> str:
        """SQLAlchemy URL; PostgreSQL via psycopg2 unless DATABASE_URL says otherwise."""
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


def _maintenance_connection(config: DatabaseConfig):
    return psycopg2.connect(
        database="postgres",
        user=config.user,
        password=config.password,
        host=config.host,
        port=config.port,
    )


def db_exists(config: DatabaseConfig) -> bool:
    """Check whether the configured PostgreSQL database exists."""
    conn = _maintenance_connection(config)
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM pg_database WHERE datname = %s;", (config.name,))
        return cursor.fetchone() is not None
    finally:
        conn.close()


def create_db(config: DatabaseConfig) -> None:
    """Create the configured PostgreSQL database."""
    conn = _maintenance_connection(config)
    conn.autocommit = True
    try:
        cursor = conn.cursor()
        cursor.execute(sql.SQL("CREATE DATABASE {};").format(sql.Identifier(config.name)))
        logger.info(f"Created database {config.name}")
    finally:
        conn.close()


def ensure_database(config: DatabaseConfig) -> None:
    """Create the PostgreSQL database if it is missing. No-op for non-PostgreSQL URLs."""
    if config.url is not None:
        return
    if not db_exists(config):
        create_db(config)
