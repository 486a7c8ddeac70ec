"""
Unit tests for database connection pool

Tests the PostgreSQL connection pool functionality using testcontainers.
"""
import pytest

from src.warehouse.connection import DatabaseConnectionPool


def container_pool(postgres_container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
        **kwargs,
    )


@pytest.mark.unit
def test_password_is_required(monkeypatch):
    """Test that a pool cannot be built without a password"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    with pytest.raises(ValueError, match="password must be provided"):
        DatabaseConnectionPool(host="localhost")


@pytest.mark.unit
def test_settings_from_environment(monkeypatch):
    """Test that DB_* variables fill unset arguments"""
    monkeypatch.setenv("DB_HOST", "db.farm.local")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_NAME", "feedlot")
    monkeypatch.setenv("DB_USER", "etl")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    monkeypatch.setenv("DB_STATEMENT_TIMEOUT_MS", "0")

    pool = DatabaseConnectionPool()

    assert pool.host == "db.farm.local"
    assert pool.port == 6543
    assert "dbname=feedlot" in pool.conninfo
    assert "user=etl" in pool.conninfo
    assert "statement_timeout" not in pool.conninfo


@pytest.mark.unit
def test_statement_timeout_in_conninfo():
    pool = DatabaseConnectionPool(host="localhost", password="x", statement_timeout_ms=5000)
    assert "statement_timeout=5000" in pool.conninfo


@pytest.mark.unit
def test_connection_requires_open_pool():
    pool = DatabaseConnectionPool(host="localhost", password="x")
    with pytest.raises(RuntimeError, match="not open"):
        with pool.get_connection():
            pass


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = container_pool(postgres_container, min_size=2, max_size=5)

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()


@pytest.mark.integration
def test_get_connection(postgres_container):
    """Test getting a connection from the pool"""
    pool = container_pool(postgres_container)
    pool.open()

    with pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 as test")
            result = cur.fetchone()
            assert result["test"] == 1

    pool.close()


@pytest.mark.integration
def test_execute_command(clean_db, postgres_container):
    """Test executing INSERT commands and reading them back"""
    pool = container_pool(postgres_container)
    pool.open()

    rowcount = pool.execute_command(
        """
        INSERT INTO dim_reference (organization_id, dimension_type, code, dimension_id)
        VALUES (%s, %s, %s, %s)
        """,
        ("org-1", "pen", "CUR-001", "pen-1"),
    )
    assert rowcount == 1

    result = pool.execute_query(
        "SELECT dimension_id FROM dim_reference WHERE organization_id = %s AND code = %s",
        ("org-1", "CUR-001"),
    )
    assert len(result) == 1
    assert result[0]["dimension_id"] == "pen-1"

    pool.close()


@pytest.mark.integration
def test_context_manager(postgres_container):
    """Test using pool as context manager"""
    with container_pool(postgres_container) as pool:
        result = pool.execute_query("SELECT current_setting('application_name') AS app")
        assert result[0]["app"] == "feedlot-etl"

    # Pool should be closed after context
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")
