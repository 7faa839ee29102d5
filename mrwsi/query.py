"""
Rewrites user supplied SELECT statements into Sqoop free-form import queries.

Sqoop needs two things to split an import across parallel mappers:

- a query carrying the ``$CONDITIONS`` placeholder, which each mapper replaces
  with its own range predicate on the split column;
- a boundary query returning ``MIN``/``MAX`` of the split column.

Without an explicit boundary query Sqoop wraps the user query and selects
``MIN``/``MAX`` of the split column from it, which fails whenever the user did
not select that column. This module detects that case and builds a boundary
query straight from the FROM/WHERE fragments instead.

This is a splitter for a single top-level ``SELECT ... FROM ... [WHERE ...]``,
not a SQL parser. OR conditions in the WHERE clause must be parenthesized by
the caller so that appending ``AND $CONDITIONS`` keeps its meaning.
"""
import re
from dataclasses import dataclass

from .errors import InvalidPartitionColumn, UnrecognizedQuery

CONDITIONS_PLACEHOLDER = "$CONDITIONS"

# The WHERE group only matches the last WHERE keyword in the statement, any
# earlier one stays part of the FROM clause.
_SELECT_PATTERN = re.compile(
    r"^\s*SELECT\b(.*?)\bFROM\b(.*?)(?:\bWHERE\b(?!.*\bWHERE\b)(.*))?$",
    re.IGNORECASE | re.DOTALL,
)


@dataclass(frozen=True)
class QueryDecomposition:
    select_list: str
    from_clause: str
    where_clause: str = ""


@dataclass(frozen=True)
class ImportQueries:
    full_query: str
    boundary_query: str


def split_partition_column(partition_column: str) -> tuple[str, str]:
    """Split ``table.column`` into its parts, rejecting anything else."""
    if not isinstance(partition_column, str) or partition_column.count(".") != 1:
        raise InvalidPartitionColumn(partition_column)
    table, column = partition_column.split(".")
    if not table.strip() or not column.strip():
        raise InvalidPartitionColumn(partition_column)
    return table.strip(), column.strip()


def decompose(query: str) -> QueryDecomposition:
    match = _SELECT_PATTERN.match(query or "")
    if match is None:
        raise UnrecognizedQuery(query)
    select_list, from_clause, where_clause = (
        (group or "").strip() for group in match.groups()
    )
    if not select_list or not from_clause:
        raise UnrecognizedQuery(query)
    # A dangling WHERE keyword with no condition after it.
    if match.group(3) is not None and not where_clause:
        raise UnrecognizedQuery(query)
    return QueryDecomposition(select_list, from_clause, where_clause)


def selects_column(select_list: str, column: str) -> bool:
    """
    True if ``column`` appears in ``select_list`` as a plain (possibly table
    qualified) identifier that is not aliased away with ``AS``.
    """
    pattern = rf"(?:\b|\.){re.escape(column)}\b(?!\s*AS\b)"
    return re.search(pattern, select_list, re.IGNORECASE) is not None


def rewrite_import_query(query: str, partition_column: str) -> ImportQueries:
    """
    Build the Sqoop ``--query`` and ``--boundary-query`` values for ``query``.

    Args:
        query: A ``SELECT ... FROM ... [WHERE ...]`` statement without a
            trailing semicolon.
        partition_column: The split column, qualified as ``table.column``.

    Raises:
        InvalidPartitionColumn: ``partition_column`` is not ``table.column``.
        UnrecognizedQuery: ``query`` does not have the expected shape.
    """
    _, column = split_partition_column(partition_column)
    parts = decompose(query)
    statement = query.strip()

    keyword = "AND" if parts.where_clause else "WHERE"
    full_query = f"{statement} {keyword} {CONDITIONS_PLACEHOLDER}"

    if selects_column(parts.select_list, column):
        boundary_query = query
    else:
        boundary_query = f"SELECT MIN({column}), MAX({column}) FROM {parts.from_clause}"
        if parts.where_clause:
            boundary_query = f"{boundary_query} WHERE {parts.where_clause}"

    return ImportQueries(full_query=full_query, boundary_query=boundary_query)
