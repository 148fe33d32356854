"""Compare-and-swap update primitive shared by the repositories.

Every guarded write is a single UPDATE whose WHERE clause pins the row's
version (and any extra predicates). rowcount == 1 means this caller won;
0 means the row moved underneath it. Nothing here commits: the calling
service owns the transaction boundary.
"""

from typing import Any, Sequence

from sqlalchemy import ColumnElement, update
from sqlalchemy.orm import Session


def update_with_version_check(
    db: Session,
    model: type,
    pk_column: Any,
    pk_value: str,
    expected_version: int,
    updates: dict[str, Any],
    extra_conditions: Sequence[ColumnElement[bool]] = (),
) -> bool:
    """Apply updates iff the row still has expected_version (and extra_conditions hold).

    Bumps version by one on success.

    Args:
        db: Database session
        model: ORM model class (must have a ``version`` column)
        pk_column: Primary key column attribute
        pk_value: Primary key value
        expected_version: Version the caller last observed
        updates: Column name → new value (SQL expressions allowed)
        extra_conditions: Additional WHERE predicates

    Returns:
        True if exactly one row was updated
    """
    values = dict(updates)
    values["version"] = model.version + 1

    stmt = (
        update(model)
        .where(pk_column == pk_value, model.version == expected_version, *extra_conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1
