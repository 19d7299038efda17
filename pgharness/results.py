"""
Turning raw protocol results into QueryResult objects.
"""

from typing import List, Sequence

from .models import Cell, QueryResult, ResultStatus


def render_rows(rows: Sequence[Sequence[Cell]]) -> str:
    """
    Render rows the way ``psql -A -t`` prints them.

    Fields are joined by "|" and rows by newlines; NULL prints as an empty
    field and no rows gives an empty string.
    """
    return "\n".join(
        "|".join("" if cell is None else cell for cell in row)
        for row in rows
    )


def cell_value(result, row: int, column: int) -> Cell:
    """Fetch one cell, None only if the null indicator says so."""
    value = result.get_value(row, column)
    if value == "" and result.get_is_null(row, column):
        return None
    return value


def materialize(result, conn) -> QueryResult:
    """
    Build a QueryResult from a raw result.

    The error text of a failed statement lives on the connection, which is
    why it is passed in. The caller still owns the raw result and must clear
    it afterwards, whatever its status.
    """
    status = result.status
    if status not in (ResultStatus.COMMAND_OK, ResultStatus.TUPLES_OK):
        return QueryResult(status=status, error_message=conn.error_message)
    if status == ResultStatus.COMMAND_OK:
        return QueryResult(status=status)

    nfields = result.nfields
    ntuples = result.ntuples
    res = QueryResult(status=status)
    for column in range(nfields):
        res.names.append(result.fname(column))
        res.types.append(result.ftype(column))

    for row in range(ntuples):
        values: List[Cell] = [
            cell_value(result, row, column) for column in range(nfields)
        ]
        res.rows.append(values)

    res.psqlout = render_rows(res.rows)
    return res
