"""
Tests for the batched upsert replicator
"""

import pymysql.cursors
import pytest

from db_sync_mysql.coordinator import DONE, PROGRESS
from db_sync_mysql.errors import NoPrimaryKeyError, StatementError
from db_sync_mysql.replicator import DataReplicator, ReplicationState, build_upsert_sql

from fakes import FakeConnection

ORDER_COLUMNS = [('id', 'int', 10, 'NO', None),
                 ('customer', 'varchar', 50, 'YES', None),
                 ('total', 'decimal', 10, 'YES', None)]


def make_orders(count):
    return [(i, f"customer-{i}", i * 10) for i in range(1, count + 1)]


def make_source(count=250, primary_keys=None):
    return FakeConnection(columns={'orders': ORDER_COLUMNS},
                          primary_keys={'orders': ['id']} if primary_keys is None else primary_keys,
                          rows={'orders': make_orders(count)})


def make_dest():
    return FakeConnection(columns={'orders': ORDER_COLUMNS}, primary_keys={'orders': ['id']})


def test_upsert_sql_updates_every_non_key_column():
    sql = build_upsert_sql('orders', ['id', 'customer', 'total'], 'id')
    assert sql == ("INSERT INTO `orders` (`id`, `customer`, `total`) VALUES (%s, %s, %s) "
                   "ON DUPLICATE KEY UPDATE `customer`=VALUES(`customer`), `total`=VALUES(`total`)")


def test_upsert_sql_for_key_only_table_stays_valid():
    assert build_upsert_sql('tags', ['id'], 'id').endswith("ON DUPLICATE KEY UPDATE `id`=VALUES(`id`)")


def test_progress_events_every_full_batch(events):
    source, dest = make_source(250), make_dest()
    result = DataReplicator(source, dest, events).replicate('orders')

    assert result.state is ReplicationState.DONE
    assert result.rows == 250
    progress = [e.rows for e in events.received if e.kind == PROGRESS]
    assert progress == [100, 200]
    done = [e for e in events.received if e.kind == DONE]
    assert len(done) == 1 and done[0].rows == 250
    assert done[0].message == "Data synchronization completed for 250 rows in table: orders"
    assert [len(rows) for _, rows in dest.batches] == [100, 100, 50]


def test_source_is_streamed_with_server_side_cursor(events):
    source, dest = make_source(20), make_dest()
    DataReplicator(source, dest, events, fetch_size=7).replicate('orders')
    streaming = [c for c in source.cursors if c.cursorclass is pymysql.cursors.SSCursor]
    assert len(streaming) == 1
    assert set(source.fetch_sizes) == {7}


def test_rows_land_in_destination(events):
    source, dest = make_source(5), make_dest()
    DataReplicator(source, dest, events, batch_size=2).replicate('orders')
    assert dest.rows['orders'] == make_orders(5)


def test_replicating_twice_converges(events):
    source, dest = make_source(130), make_dest()
    DataReplicator(source, dest, events).replicate('orders')
    first = list(dest.rows['orders'])
    DataReplicator(source, dest, events).replicate('orders')
    assert dest.rows['orders'] == first
    assert len(first) == 130


def test_existing_rows_are_updated_in_place(events):
    source, dest = make_source(3), make_dest()
    dest.rows['orders'] = [(2, 'stale', 0)]
    DataReplicator(source, dest, events).replicate('orders')
    assert sorted(dest.rows['orders']) == make_orders(3)


def test_table_without_primary_key_never_touches_destination(events):
    source, dest = make_source(10, primary_keys={}), make_dest()
    result = DataReplicator(source, dest, events).replicate('orders')

    assert result.state is ReplicationState.FAILED
    assert isinstance(result.error, NoPrimaryKeyError)
    assert dest.executed == [] and dest.batches == []
    assert not any(c.cursorclass is pymysql.cursors.SSCursor for c in source.cursors)


def test_failed_batch_keeps_earlier_batches(events):
    source = make_source(250)
    dest = make_dest()
    original_upsert = dest.upsert
    calls = []

    def failing_upsert(sql, rows):
        calls.append(len(rows))
        if len(calls) == 2:
            raise pymysql.err.OperationalError(1054, "Unknown column 'total'")
        original_upsert(sql, rows)

    dest.upsert = failing_upsert
    result = DataReplicator(source, dest, events).replicate('orders')

    assert result.state is ReplicationState.FAILED
    assert isinstance(result.error, StatementError)
    assert result.rows == 100
    assert len(dest.rows['orders']) == 100


def test_invalid_batch_size_rejected(events):
    with pytest.raises(ValueError):
        DataReplicator(make_source(), make_dest(), events, batch_size=0)
