"""
Unit tests for BatchWriter against a mocked connection pool
"""

from datetime import date
from unittest.mock import MagicMock

import psycopg
import pytest

from src.core.errors import StorageError
from src.core.models import DimensionReference, DimensionType, ProcessedRecord
from src.core.settings import EngineSettings
from src.warehouse.upsert import BatchWriter, WriteResult, chunked


def make_record(row_number, **overrides):
    values = {
        "data_ref": date(2025, 1, 15),
        "turno": "MANHA",
        "equipamento": "BAHMAN",
        "curral_codigo": f"CUR-{row_number:03d}",
        "dieta_nome": "DIETA A",
        "kg_planejado": 1000.0,
        "kg_real": 990.0,
        "desvio_kg": -10.0,
        "desvio_pct": -1.0,
    }
    values.update(overrides)
    return ProcessedRecord(
        organization_id="org-1",
        pipeline_type="loading_deviation",
        row_number=row_number,
        data_ref=values["data_ref"],
        values=values,
        natural_key=f"ORG-1|2025-01-15|BAHMAN|CUR-{row_number:03d}|MANHA",
        dimensions={
            "pen": DimensionReference(dimension_type=DimensionType.PEN, code="CUR-001", dimension_id="pen-1"),
        },
    )


class FakeDeadLetterQueue:
    def __init__(self):
        self.records = []

    def add(self, record):
        self.records.append(record)
        return len(self.records)


def connection_context(conn):
    context = MagicMock()
    context.__enter__.return_value = conn
    context.__exit__.return_value = False
    return context


@pytest.fixture
def cursor():
    cur = MagicMock()
    cur.fetchone.return_value = {"natural_key": "k", "inserted": True}
    return cur


@pytest.fixture
def conn(cursor):
    connection = MagicMock()
    connection.cursor.return_value.__enter__.return_value = cursor
    return connection


@pytest.fixture
def pool(conn):
    mock_pool = MagicMock()
    mock_pool.get_connection.return_value = connection_context(conn)
    return mock_pool


@pytest.fixture
def settings():
    return EngineSettings(chunk_size=2, writer_max_retries=2, writer_retry_delay_seconds=0.0)


@pytest.mark.unit
class TestChunked:
    def test_chunks(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []

    def test_merge_results(self):
        total = WriteResult(inserted=1, chunks=1)
        total.merge(WriteResult(updated=2, chunks=1, failed_rows=[{"row_number": 3}]))

        assert total.written == 3
        assert total.chunks == 2
        assert total.failed_rows == [{"row_number": 3}]


@pytest.mark.unit
class TestColumns:
    def test_staging_columns(self, loading_definition):
        columns = BatchWriter.staging_columns(loading_definition)

        assert columns[:5] == ["organization_id", "natural_key", "file_id", "run_id", "row_number"]
        assert columns[5:14] == loading_definition.storage.columns
        assert columns[14:17] == ["curral_id", "dieta_id", "equipamento_id"]
        assert columns[-3:] == ["enrichment_status", "low_confidence", "warnings"]

    def test_fact_columns_have_no_row_number(self, loading_definition):
        assert "row_number" not in BatchWriter.fact_columns(loading_definition)


@pytest.mark.unit
class TestWriteStaging:
    """Tests for BatchWriter.write_staging"""

    def test_rows_written_in_chunks(self, pool, cursor, settings, loading_definition):
        writer = BatchWriter(pool, settings, sleep=lambda _: None)

        result = writer.write_staging(loading_definition, [make_record(n) for n in range(2, 7)], "f-1", "r-1")

        assert result.inserted == 5
        assert result.chunks == 3
        assert pool.get_connection.call_count == 3
        assert cursor.execute.call_count == 5

    def test_upsert_statement_and_parameters(self, pool, cursor, settings, loading_definition):
        BatchWriter(pool, settings).write_staging(loading_definition, [make_record(2)], "f-1", "r-1")

        sql, params = cursor.execute.call_args[0]
        assert "INSERT INTO staging_desvio_carregamento" in sql
        assert "ON CONFLICT (organization_id, file_id, natural_key) DO UPDATE SET" in sql
        assert "natural_key = EXCLUDED.natural_key" not in sql
        assert "kg_real = EXCLUDED.kg_real" in sql

        columns = BatchWriter.staging_columns(loading_definition)
        assert len(params) == len(columns)
        assert params[:5] == ("org-1", "ORG-1|2025-01-15|BAHMAN|CUR-002|MANHA", "f-1", "r-1", 2)
        assert params[columns.index("curral_id")] == "pen-1"
        assert params[columns.index("dieta_id")] is None
        assert params[columns.index("enrichment_status")] == "SUCCESS"
        assert params[-1].obj == []

    def test_existing_rows_count_as_updates(self, pool, cursor, settings, loading_definition):
        cursor.fetchone.return_value = {"natural_key": "k", "inserted": False}

        result = BatchWriter(pool, settings).write_staging(loading_definition, [make_record(2)], "f-1", "r-1")

        assert result.updated == 1
        assert result.inserted == 0

    def test_refused_row_does_not_abort_chunk(self, pool, cursor, settings, loading_definition):
        cursor.execute.side_effect = [None, psycopg.DataError("numeric field overflow")]

        result = BatchWriter(pool, settings).write_staging(
            loading_definition, [make_record(2), make_record(3)], "f-1", "r-1"
        )

        assert result.inserted == 1
        assert result.failed_rows[0]["row_number"] == 3
        assert result.failed_rows[0]["code"] == "STORAGE_REJECTED"
        assert "overflow" in result.failed_rows[0]["message"]

    def test_transient_failure_is_retried(self, pool, conn, settings, loading_definition):
        pool.get_connection.side_effect = [
            psycopg.OperationalError("connection lost"),
            connection_context(conn),
        ]
        sleeps = []

        result = BatchWriter(pool, settings, sleep=sleeps.append).write_staging(
            loading_definition, [make_record(2)], "f-1", "r-1"
        )

        assert result.inserted == 1
        assert sleeps == [0.0]

    def test_exhausted_chunk_is_dead_lettered(self, pool, settings, loading_definition):
        pool.get_connection.side_effect = psycopg.OperationalError("connection refused")
        dead_letter = FakeDeadLetterQueue()
        writer = BatchWriter(pool, settings, dead_letter=dead_letter, sleep=lambda _: None)

        with pytest.raises(StorageError) as exc_info:
            writer.write_staging(loading_definition, [make_record(2)], "f-1", "r-1")

        assert exc_info.value.transient is True
        assert pool.get_connection.call_count == 2
        record = dead_letter.records[0]
        assert record.operation == "write_staging"
        assert record.payload["row_numbers"] == [2]

    def test_dead_letter_can_be_disabled(self, pool, loading_definition):
        pool.get_connection.side_effect = psycopg.OperationalError("connection refused")
        dead_letter = FakeDeadLetterQueue()
        settings = EngineSettings(writer_max_retries=1, dead_letter_enabled=False)

        with pytest.raises(StorageError):
            BatchWriter(pool, settings, dead_letter=dead_letter).write_staging(
                loading_definition, [make_record(2)], "f-1", "r-1"
            )
        assert dead_letter.records == []

    def test_no_records_writes_nothing(self, pool, settings, loading_definition):
        result = BatchWriter(pool, settings).write_staging(loading_definition, [], "f-1", "r-1")

        assert result.written == 0
        pool.get_connection.assert_not_called()


@pytest.mark.unit
class TestPromoteToFact:
    """Tests for BatchWriter.promote_to_fact"""

    def test_pages_through_staging(self, pool, conn, cursor, settings, loading_definition):
        cursor.fetchall.side_effect = [
            [{"natural_key": "A", "inserted": True}, {"natural_key": "B", "inserted": False}],
            [{"natural_key": "C", "inserted": True}],
            [],
        ]

        result = BatchWriter(pool, settings).promote_to_fact(loading_definition, "org-1", "f-1", "r-1")

        assert result.inserted == 2
        assert result.updated == 1
        assert result.chunks == 2

        calls = cursor.execute.call_args_list
        assert [c[0][1] for c in calls] == [
            ("org-1", "f-1", "", 2),
            ("org-1", "f-1", "B", 2),
            ("org-1", "f-1", "C", 2),
        ]
        sql = calls[0][0][0]
        assert "INSERT INTO fato_desvio_carregamento" in sql
        assert "FROM staging_desvio_carregamento" in sql
        assert "ON CONFLICT (organization_id, natural_key)" in sql
        assert conn.commit.call_count == 3

    def test_cursor_follows_byte_order(self, pool, cursor, settings, loading_definition):
        """Test that the page cursor and the SQL ordering agree on punctuated keys"""
        cursor.fetchall.side_effect = [
            [{"natural_key": "ORG|C 02|MANHA", "inserted": True}, {"natural_key": "ORG|C01|MANHA", "inserted": True}],
            [],
        ]

        BatchWriter(pool, settings).promote_to_fact(loading_definition, "org-1", "f-1", "r-1")

        calls = cursor.execute.call_args_list
        assert calls[1][0][1][2] == "ORG|C01|MANHA"
        sql = calls[0][0][0]
        assert 'natural_key COLLATE "C" > %s' in sql
        assert 'ORDER BY natural_key COLLATE "C"' in sql
