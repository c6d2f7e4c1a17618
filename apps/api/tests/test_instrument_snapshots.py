import json

import pytest

from services.instrument_links import InstrumentLink, normalize_tag
from services.instrument_snapshots import (
    SnapshotBuilder,
    parse_and_validate_snapshot,
    serialize_snapshot_payload,
)
from services.snapshot_store import SHEET_INSTRUMENT_SNAPSHOT_VERSION


PT_101 = InstrumentLink(
    instrument_id=10,
    instrument_tag="PT-101",
    instrument_tag_norm="PT-101",
    instrument_type="Pressure",
    link_role=None,
    loop_tags=["LC-101"],
)


def test_serialize_uses_compact_camel_case_records():
    payload = serialize_snapshot_payload([PT_101])

    assert payload == (
        '[{"instrumentId":10,"instrumentTag":"PT-101","instrumentTagNorm":"PT-101",'
        '"instrumentType":"Pressure","linkRole":null,"loopTags":["LC-101"]}]'
    )


def test_parse_round_trips_serialized_payload():
    payload = serialize_snapshot_payload([PT_101])

    assert parse_and_validate_snapshot(payload, SHEET_INSTRUMENT_SNAPSHOT_VERSION) == [PT_101]


def test_parse_accepts_minimal_records():
    payload = json.dumps([{"instrumentId": 1, "instrumentTag": "a"}, {"instrumentId": 2, "instrumentTag": "b"}])

    links = parse_and_validate_snapshot(payload, SHEET_INSTRUMENT_SNAPSHOT_VERSION)

    assert [link.instrument_id for link in links] == [1, 2]
    assert links[0].instrument_tag_norm is None
    assert links[0].loop_tags == []


def test_parse_empty_array_is_a_valid_empty_snapshot():
    assert parse_and_validate_snapshot("[]", SHEET_INSTRUMENT_SNAPSHOT_VERSION) == []


@pytest.mark.parametrize(
    "payload, build_version",
    [
        ('[{"instrumentId":1,"instrumentTag":"a"}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION + 1),
        ("not json", SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('{"instrumentId":1,"instrumentTag":"a"}', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentTag":"a"}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":"1","instrumentTag":"a"}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":true,"instrumentTag":"a"}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":NaN,"instrumentTag":"a"}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":1}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":1,"instrumentTag":7}]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":1,"instrumentTag":"a"},null]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        ('[{"instrumentId":1,"instrumentTag":"a"},"PT-1"]', SHEET_INSTRUMENT_SNAPSHOT_VERSION),
        (None, SHEET_INSTRUMENT_SNAPSHOT_VERSION),
    ],
)
def test_parse_rejects_untrusted_payloads(payload, build_version):
    assert parse_and_validate_snapshot(payload, build_version) is None


def test_parse_coerces_wrong_typed_optional_fields():
    payload = json.dumps(
        [
            {
                "instrumentId": 3,
                "instrumentTag": "LT-3",
                "instrumentTagNorm": 42,
                "instrumentType": ["Level"],
                "linkRole": {"role": "primary"},
                "loopTags": ["LC-3", 9, None, "LC-4"],
            },
            {"instrumentId": 4, "instrumentTag": "LT-4", "loopTags": "LC-5"},
        ]
    )

    links = parse_and_validate_snapshot(payload, SHEET_INSTRUMENT_SNAPSHOT_VERSION)

    assert links[0].instrument_tag_norm is None
    assert links[0].instrument_type is None
    assert links[0].link_role is None
    assert links[0].loop_tags == ["LC-3", "LC-4"]
    assert links[1].loop_tags == []


def test_normalize_tag():
    assert normalize_tag("  ft 100 ") == "FT-100"
    assert normalize_tag("pt_101") == "PT-101"


@pytest.mark.asyncio
async def test_builder_uses_injected_source():
    calls = []

    async def source(account_id, sheet_id):
        calls.append((account_id, sheet_id))
        return (PT_101,)

    builder = SnapshotBuilder(source=source)

    assert await builder.build(1, 5) == [PT_101]
    assert calls == [(1, 5)]


@pytest.mark.asyncio
async def test_builder_reads_links_in_deterministic_order(session_maker, seeded_sheet):
    builder = SnapshotBuilder(session_maker=session_maker)

    links = await builder.build(seeded_sheet["account_id"], seeded_sheet["sheet_id"])

    assert [link.instrument_tag for link in links] == ["FT 100", "PT-101"]
    assert links[0].link_role == "primary"
    assert links[0].loop_tags == []
    assert links[1].instrument_id == seeded_sheet["pt_id"]
    assert links[1].loop_tags == ["LC-101"]


@pytest.mark.asyncio
async def test_builder_ignores_links_from_other_accounts(session_maker, seeded_sheet):
    builder = SnapshotBuilder(session_maker=session_maker)

    assert await builder.build(2, seeded_sheet["sheet_id"]) == []
