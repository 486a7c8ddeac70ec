"""
PostgreSQL connection pool for the warehouse, state and dimension tables.

One pool is built by the entry point (CLI or test fixture) and passed to every
repository; nothing in the engine reaches for a process-wide pool.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from src.observability.logger import get_logger

logger = get_logger(__name__)

APPLICATION_NAME = "feedlot-etl"


class DatabaseConnectionPool:
    """
    psycopg3 connection pool shared by every repository of the engine.

    Rows come back as dictionaries. Validation threads and concurrent file
    runs each borrow their own connection, so ``max_size`` should cover
    ``validation_workers`` plus the writer.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
        statement_timeout_ms: int | None = None,
        application_name: str = APPLICATION_NAME,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Seconds to wait for a connection (and to connect)
            statement_timeout_ms: Per-statement timeout (defaults to env var
                DB_STATEMENT_TIMEOUT_MS, 0 disables)
            application_name: Name shown in pg_stat_activity
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "datawarehouse")
        self.user = user or os.getenv("DB_USER", "pipeline")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        if statement_timeout_ms is None:
            statement_timeout_ms = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "0"))
        self.statement_timeout_ms = statement_timeout_ms

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"application_name={application_name} "
            f"connect_timeout={int(self.timeout)}"
        )
        if self.statement_timeout_ms:
            self.conninfo += f" options='-c statement_timeout={self.statement_timeout_ms}'"

        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, waiting until ``min_size`` connections are up.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between attempts in seconds

        Raises:
            OperationalError: If the database stays unreachable
        """
        if self._pool is not None:
            return

        self._pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

        for attempt in range(1, max_retries + 1):
            try:
                self._pool.open(wait=True, timeout=self.timeout)
                logger.info(
                    f"Connection pool open on {self.host}:{self.port}/{self.database}",
                    extra={"min_size": self.min_size, "max_size": self.max_size},
                )
                return
            except OperationalError as e:
                if attempt < max_retries:
                    logger.warning(
                        f"Database not reachable (attempt {attempt}/{max_retries}): {e}",
                        extra={"host": self.host, "port": self.port},
                    )
                    time.sleep(retry_delay)
                else:
                    self._pool.close()
                    self._pool = None
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection; it goes back to the pool when the block exits.

        Yields:
            psycopg.Connection: Database connection

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        """Cursor on a borrowed connection."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    def execute_query(self, query: str, params: tuple | None = None) -> list[dict]:
        """
        Run a statement that returns rows (SELECT, or DML with RETURNING).

        The pooled connection commits on clean exit, so RETURNING writes are
        persisted too.

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: tuple | None = None) -> int:
        """
        Run an INSERT/UPDATE/DELETE and commit.

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
            return rowcount

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
        return False
