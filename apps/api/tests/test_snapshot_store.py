import pytest

from services.snapshot_store import SHEET_INSTRUMENT_SNAPSHOT_VERSION, SnapshotMeta


PAYLOAD = '[{"instrumentId":10,"instrumentTag":"PT-101","instrumentTagNorm":"PT-101","instrumentType":"Pressure","linkRole":null,"loopTags":["LC-101"]}]'


@pytest.mark.asyncio
async def test_get_returns_none_for_unknown_key(snapshot_store):
    assert await snapshot_store.get(1, 5) is None


@pytest.mark.asyncio
async def test_upsert_snapshot_inserts_then_replaces(snapshot_store):
    await snapshot_store.upsert_snapshot(1, 5, PAYLOAD, SnapshotMeta(build_ms=12, instrument_count=1))
    first = await snapshot_store.get(1, 5)
    assert first.payload_json == PAYLOAD
    assert first.build_ms == 12
    assert first.instrument_count == 1
    assert first.build_version == SHEET_INSTRUMENT_SNAPSHOT_VERSION
    assert first.built_at is not None

    await snapshot_store.upsert_snapshot(1, 5, "[]", SnapshotMeta(build_ms=3, instrument_count=0))
    second = await snapshot_store.get(1, 5)
    assert second.payload_json == "[]"
    assert second.instrument_count == 0
    assert second.build_ms == 3


@pytest.mark.asyncio
async def test_upsert_error_without_snapshot_creates_placeholder_row(snapshot_store):
    await snapshot_store.upsert_error(1, 5, "Build failed")

    row = await snapshot_store.get(1, 5)
    assert row.payload_json == "[]"
    assert row.instrument_count == 0
    assert row.build_version == 1
    assert row.build_ms is None
    assert row.last_error == "Build failed"
    assert row.last_error_at is not None


@pytest.mark.asyncio
async def test_upsert_error_keeps_previous_good_payload(snapshot_store):
    await snapshot_store.upsert_snapshot(1, 5, PAYLOAD, SnapshotMeta(build_ms=12, instrument_count=1))

    await snapshot_store.upsert_error(1, 5, "Build failed")

    row = await snapshot_store.get(1, 5)
    assert row.payload_json == PAYLOAD
    assert row.instrument_count == 1
    assert row.build_ms == 12
    assert row.last_error == "Build failed"


@pytest.mark.asyncio
async def test_successful_upsert_clears_last_error(snapshot_store):
    await snapshot_store.upsert_error(1, 5, "Build failed")

    await snapshot_store.upsert_snapshot(1, 5, PAYLOAD, SnapshotMeta(build_ms=7, instrument_count=1))

    row = await snapshot_store.get(1, 5)
    assert row.last_error is None
    assert row.last_error_at is None
    assert row.payload_json == PAYLOAD


@pytest.mark.asyncio
async def test_upsert_error_truncates_to_500_chars(snapshot_store):
    await snapshot_store.upsert_error(1, 5, "e" * 800)

    row = await snapshot_store.get(1, 5)
    assert len(row.last_error) == 500
    assert row.last_error.endswith("...")


@pytest.mark.asyncio
async def test_keys_are_independent(snapshot_store):
    await snapshot_store.upsert_snapshot(1, 5, PAYLOAD, SnapshotMeta(build_ms=1, instrument_count=1))
    await snapshot_store.upsert_error(1, 7, "Build failed")
    await snapshot_store.upsert_error(2, 5, "Other account")

    assert (await snapshot_store.get(1, 5)).last_error is None
    assert (await snapshot_store.get(1, 7)).last_error == "Build failed"
    assert (await snapshot_store.get(2, 5)).last_error == "Other account"
