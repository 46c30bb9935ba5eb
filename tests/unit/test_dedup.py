"""Unit tests for row deduplication."""

from fleet_sync.sync.dedup import deduplicate, has_duplicates


def test_keeps_first_occurrence_in_order():
    rows = [
        {"id": 1, "name": "a"},
        {"id": 2, "name": "b"},
        {"id": 2, "name": "b-retry"},
        {"id": 3, "name": "c"},
    ]

    result = deduplicate(rows)

    assert [row["id"] for row in result] == [1, 2, 3]
    assert result[1]["name"] == "b"


def test_output_is_selection_of_input():
    rows = [{"id": 3}, {"id": 1}, {"id": 3}, {"id": 2}, {"id": 1}]

    result = deduplicate(rows)

    assert [row["id"] for row in result] == [3, 1, 2]
    assert all(any(row is original for original in rows) for row in result)


def test_custom_id_field():
    rows = [
        {"vehicle_id": "v1", "status": "active"},
        {"vehicle_id": "v1", "status": "stale"},
        {"vehicle_id": "v2", "status": "active"},
    ]

    result = deduplicate(rows, id_field="vehicle_id")

    assert result == [
        {"vehicle_id": "v1", "status": "active"},
        {"vehicle_id": "v2", "status": "active"},
    ]


def test_rows_without_identifier_are_kept():
    rows = [{"id": 1}, {"name": "draft"}, {"name": "draft"}, {"id": 1}]

    result = deduplicate(rows)

    assert result == [{"id": 1}, {"name": "draft"}, {"name": "draft"}]


def test_assume_distinct_returns_input_unchanged():
    rows = [{"id": 1}, {"id": 1}]

    result = deduplicate(rows, assume_distinct=True)

    assert result is rows


def test_empty_input():
    assert deduplicate([]) == []


def test_has_duplicates():
    assert has_duplicates([{"id": 1}, {"id": 2}, {"id": 1}])
    assert not has_duplicates([{"id": 1}, {"id": 2}])
