"""
Pytest configuration and fixtures for feedlot ETL engine tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
import pytest
from typing import Generator
from testcontainers.postgres import PostgresContainer
import psycopg

from src.core.models import AuditEvent
from src.core.rules import PipelineConfigLoader
from src.core.settings import EngineSettings

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))

ETL_TABLES = [
    "staging_desvio_carregamento",
    "fato_desvio_carregamento",
    "staging_trato_curral",
    "fato_trato_curral",
    "dim_pending_entry_history",
    "dim_pending_entry",
    "dim_reference",
    "etl_dead_letter",
    "etl_audit_event",
    "etl_reprocessing_log",
    "etl_run",
    "etl_file",
]


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with initialized database
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_datawarehouse",
        driver=None,
    ) as postgres:
        # Wait for container to be ready
        conn_url = postgres.get_connection_url()

        # Run init script
        init_sql_path = os.path.join(ROOT_DIR, "docker", "init-db.sql")

        if os.path.exists(init_sql_path):
            with open(init_sql_path, 'r') as f:
                init_sql = f.read()

            with psycopg.connect(conn_url) as conn:
                with conn.cursor() as cur:
                    cur.execute(init_sql)
                conn.commit()

        yield postgres


@pytest.fixture(scope="function")
def db_connection(postgres_container) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a database connection for a single test

    Args:
        postgres_container: PostgreSQL container fixture

    Yields:
        psycopg Connection object
    """
    conn_url = postgres_container.get_connection_url()
    with psycopg.connect(conn_url) as conn:
        yield conn
        # Rollback any uncommitted changes after test
        conn.rollback()


@pytest.fixture(scope="function")
def clean_db(db_connection) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a clean database by truncating all tables before each test

    Args:
        db_connection: Database connection fixture

    Yields:
        psycopg Connection object with clean database
    """
    with db_connection.cursor() as cur:
        cur.execute(f"TRUNCATE TABLE {', '.join(ETL_TABLES)} RESTART IDENTITY CASCADE")
        db_connection.commit()

    yield db_connection


@pytest.fixture(scope="function")
def db_pool(clean_db, postgres_container):
    """
    Open connection pool against a clean test database

    Yields:
        DatabaseConnectionPool (closed after the test)
    """
    from src.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=8,
    )
    pool.open()
    try:
        yield pool
    finally:
        pool.close()


# =======================
# ENGINE FIXTURES
# =======================

@pytest.fixture(scope="session")
def pipeline_definitions():
    """Pipeline definitions shipped in config/pipelines"""
    return PipelineConfigLoader(os.path.join(ROOT_DIR, "config", "pipelines")).load_all()


@pytest.fixture
def loading_definition(pipeline_definitions):
    return pipeline_definitions["loading_deviation"]


@pytest.fixture
def feeding_definition(pipeline_definitions):
    return pipeline_definitions["feeding_treatment"]


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Settings with no waiting between attempts"""
    return EngineSettings(
        batch_size=50,
        chunk_size=20,
        writer_max_retries=2,
        writer_retry_delay_seconds=0.0,
        retry_base_delay_seconds=0.0,
        validation_workers=2,
        pipelines_dir=os.path.join(ROOT_DIR, "config", "pipelines"),
    )


class RecordingAudit:
    """In-memory audit sink that keeps every event"""

    def __init__(self):
        self.events: list[AuditEvent] = []

    def log_event(self, level, action, message, details=None, organization_id=None, file_id=None, run_id=None):
        event = AuditEvent(
            event_id=len(self.events) + 1,
            level=level,
            action=action,
            message=message,
            details=details or {},
            organization_id=organization_id,
            file_id=file_id,
            run_id=run_id,
        )
        self.events.append(event)
        return event

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


@pytest.fixture
def recording_audit() -> RecordingAudit:
    return RecordingAudit()


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(ROOT_DIR, "config", "test.env")

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
