"""Tests for SQL normalisation."""

from querypilot.utils.sql_format import normalize_query, strip_code_fences


class TestNormalizeQuery:
    """Test cleanup of model-produced SQL."""

    def test_uppercases_keywords(self) -> None:
        assert normalize_query("select 1") == "SELECT 1"

    def test_strips_fences_and_semicolons(self) -> None:
        assert normalize_query("```sql\nselect 1;\n```") == "SELECT 1"

    def test_reindents_clauses(self) -> None:
        formatted = normalize_query("select a, b from t where a > 1")
        lines = formatted.splitlines()
        assert lines[0].startswith("SELECT a")
        assert any(line.startswith("FROM t") for line in lines)
        assert any(line.startswith("WHERE a > 1") for line in lines)

    def test_named_argument_arrow_is_kept(self) -> None:
        formatted = normalize_query("select * from read_excel('b.xlsx', sheet_name => 'Q1')")
        assert "sheet_name => 'Q1'" in formatted
        assert "= >" not in formatted

    def test_string_literals_untouched(self) -> None:
        formatted = normalize_query("select * from read_csv('/data/select from.csv')")
        assert "'/data/select from.csv'" in formatted

    def test_blank(self) -> None:
        assert normalize_query("   ") == ""
        assert normalize_query("```\n```") == ""


def test_strip_code_fences() -> None:
    assert strip_code_fences("```SQL\nSELECT 1\n```") == "SELECT 1"
    assert strip_code_fences("SELECT 1") == "SELECT 1"
