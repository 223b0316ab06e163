"""SQL text normalisation for model-produced and editor queries."""

from __future__ import annotations

import re

import sqlparse


_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
# sqlparse splits the named-parameter arrow into "= >" when reindenting.
_NAMED_ARG_PATTERN = re.compile(r"=\s+>")


def strip_code_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def normalize_query(query_text: str) -> str:
    """Clean up query text before it is shown or executed.

    Strips markdown fences and trailing semicolons, upper-cases keywords and
    reindents the statement.

    Args:
        query_text: Raw SQL, possibly wrapped in a fenced block.

    Returns:
        Formatted SQL, or an empty string for blank input.
    """
    sql = strip_code_fences(query_text)
    sql = sql.rstrip().rstrip(";").rstrip()
    if not sql:
        return ""

    formatted = sqlparse.format(sql, keyword_case="upper", reindent=True)
    return _NAMED_ARG_PATTERN.sub("=>", formatted).strip()
