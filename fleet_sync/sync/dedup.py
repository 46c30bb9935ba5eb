"""Primary-key deduplication of fetched rows."""

from typing import List, Sequence

from ..schemas.models import Row


def deduplicate(rows: Sequence[Row], id_field: str = "id", assume_distinct: bool = False) -> List[Row]:
    """
    Keep the first row seen for each identifier.

    Surviving rows keep their relative order. Rows without ``id_field`` are
    kept as-is since they cannot collide. When ``assume_distinct`` is set the
    input is returned unchanged.
    """
    if assume_distinct:
        return rows if isinstance(rows, list) else list(rows)

    seen = set()
    result: List[Row] = []
    for row in rows:
        if id_field not in row:
            result.append(row)
            continue
        identifier = row[id_field]
        if identifier in seen:
            continue
        seen.add(identifier)
        result.append(row)
    return result


def has_duplicates(rows: Sequence[Row], id_field: str = "id") -> bool:
    """Check whether any identifier occurs more than once."""
    identifiers = [row[id_field] for row in rows if id_field in row]
    return len(identifiers) != len(set(identifiers))
