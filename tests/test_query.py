import pytest

from mrwsi.errors import InvalidPartitionColumn, UnrecognizedQuery
from mrwsi.query import decompose, rewrite_import_query, selects_column, split_partition_column


def test_decompose_extracts_fragments():
    parts = decompose("SELECT a FROM b WHERE c")
    assert (parts.select_list, parts.from_clause, parts.where_clause) == ("a", "b", "c")


def test_decompose_without_where():
    parts = decompose("select num0, num1 from t")
    assert parts.select_list == "num0, num1"
    assert parts.from_clause == "t"
    assert parts.where_clause == ""


def test_decompose_uses_last_where():
    query = "SELECT a FROM (SELECT a FROM x WHERE y > 1) s WHERE a < 5"
    parts = decompose(query)
    assert parts.from_clause == "(SELECT a FROM x WHERE y > 1) s"
    assert parts.where_clause == "a < 5"


def test_decompose_spans_lines():
    parts = decompose("SELECT a,\n  b\nFROM t\nWHERE a = 1\n  AND b = 2")
    assert parts.select_list == "a,\n  b"
    assert parts.where_clause == "a = 1\n  AND b = 2"


def test_decompose_ignores_where_inside_identifiers():
    parts = decompose("SELECT somewhere FROM t")
    assert parts.select_list == "somewhere"
    assert parts.where_clause == ""


@pytest.mark.parametrize("query", ["", "UPDATE t SET a = 1", "SELECT a", "SELECT FROM t", "SELECT a FROM"])
def test_decompose_rejects_other_statements(query):
    with pytest.raises(UnrecognizedQuery):
        decompose(query)


def test_full_query_appends_and_to_existing_where():
    queries = rewrite_import_query("SELECT a FROM b WHERE c", "b.id")
    assert queries.full_query == "SELECT a FROM b WHERE c AND $CONDITIONS"


def test_full_query_adds_where_when_missing():
    queries = rewrite_import_query("SELECT a FROM b", "b.id")
    assert queries.full_query.endswith("WHERE $CONDITIONS")


def test_boundary_query_is_original_when_column_selected():
    queries = rewrite_import_query("SELECT id, x FROM t", "t.id")
    assert queries.boundary_query == "SELECT id, x FROM t"


def test_boundary_query_synthesized_when_column_missing():
    queries = rewrite_import_query("SELECT x FROM t", "t.id")
    assert queries.boundary_query == "SELECT MIN(id), MAX(id) FROM t"


def test_boundary_query_keeps_where_clause():
    queries = rewrite_import_query("SELECT x FROM t WHERE (x > 1 OR x < -1)", "t.id")
    assert queries.boundary_query == "SELECT MIN(id), MAX(id) FROM t WHERE (x > 1 OR x < -1)"


def test_end_to_end_import_queries():
    queries = rewrite_import_query("SELECT num0, num1 FROM t", "t.id")
    assert queries.full_query == "SELECT num0, num1 FROM t WHERE $CONDITIONS"
    assert queries.boundary_query == "SELECT MIN(id), MAX(id) FROM t"


@pytest.mark.parametrize("select_list,expected", [
    ("id, x", True),
    ("t.id, x", True),
    ("x, ID", True),
    ("id AS ident, x", False),
    ("uid, x", False),
    ("id_x", False),
    ("x", False),
])
def test_selects_column(select_list, expected):
    assert selects_column(select_list, "id") is expected


@pytest.mark.parametrize("column", ["id", "", "a.b.c", ".id", "t.", None])
def test_invalid_partition_column(column):
    with pytest.raises(InvalidPartitionColumn):
        split_partition_column(column)


def test_partition_column_checked_before_parsing():
    with pytest.raises(InvalidPartitionColumn):
        rewrite_import_query("not even sql", "id")


def test_split_partition_column():
    assert split_partition_column("orders.order_id") == ("orders", "order_id")


@pytest.mark.parametrize("query", ["SELECT a FROM t WHERE", "SELECT a FROM t where   \n"])
def test_dangling_where_rejected(query):
    with pytest.raises(UnrecognizedQuery):
        decompose(query)
    with pytest.raises(UnrecognizedQuery):
        rewrite_import_query(query, "t.id")
