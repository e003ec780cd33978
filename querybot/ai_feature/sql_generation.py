import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from querybot.ai_feature.parsing import strip_code_fences
from querybot.ai_feature.provider import TextGenerationProvider
from querybot.ai_feature.schema_index import format_for_prompt
from querybot.ai_feature.types import Failure, RankedTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedQuery:
    sql: str
    tables_used: List[str]
    raw_response: str


@dataclass
class ValidationResult:
    valid: bool
    sql: str
    errors: List[str] = field(default_factory=list)


def extract_sql(response: str) -> str:
    """Strip markdown fences from model output and terminate with a semicolon."""
    sql = strip_code_fences(response)
    if not sql.endswith(";"):
        sql += ";"
    return sql


class SqlGenerator:
    """Turns a question plus retrieved tables into one SELECT statement."""

    def __init__(self, generator: TextGenerationProvider, default_limit: int = 100):
        self.generator = generator
        self.default_limit = default_limit

    async def generate(self, query: str, tables: List[RankedTable]) -> Optional[GeneratedQuery]:
        if not tables:
            logger.warning(f"No relevant tables found for query: {query}")
            return None

        prompt = self._build_prompt(query, format_for_prompt(tables))
        result = await self.generator.generate(prompt, temperature=0.1, max_tokens=1024)
        if isinstance(result, Failure):
            return None

        return GeneratedQuery(
            sql=extract_sql(result.value),
            tables_used=[table.table_name for table in tables],
            raw_response=result.value,
        )

    def _build_prompt(self, query: str, schema_context: str) -> str:
        return f"""You are a SQL query generator. Generate one valid SQL SELECT query that answers the user's question.

{schema_context}
Core Rules:
1. Generate ONLY ONE SELECT query (no INSERT, UPDATE, DELETE, DROP, ALTER, CREATE)
2. Use ONLY the tables and columns listed above
3. Return ONLY the SQL query, without explanation, markdown or comments
4. Use explicit JOIN ... ON syntax when several tables are needed
5. Add WHERE clauses that match the question
6. Use LIMIT {self.default_limit} if the question does not ask for a specific number of rows
7. NEVER select columns whose name contains password, secret, token or key
8. NEVER mix aggregate functions (COUNT, SUM, AVG, MAX, MIN) with plain columns unless using GROUP BY
9. Use DISTINCT when joins could duplicate rows

Table selection:
- The PRIMARY entity is the subject of the question: "How many ORDERS ..." selects FROM orders
- "Show USERS who have orders" selects FROM users and joins orders
- Use LIKE for partial name matches

User Question: "{query}"

SQL:"""


class QueryValidator:
    """
    Safety gate for generated SQL.

    Only single read-only SELECT statements over the allowed tables (plus the
    tables they reference through foreign keys) pass. A row cap is appended
    when the query has no LIMIT.
    """

    DANGEROUS_PATTERNS = [
        (re.compile(r"\b(DROP|DELETE|UPDATE|INSERT|TRUNCATE|ALTER|CREATE)\b", re.I), "Dangerous operation detected"),
        (re.compile(r";\s*\w+", re.I), "Multiple statements not allowed"),
        (re.compile(r"--|#|/\*"), "SQL comments not allowed"),
        (re.compile(r"\bINTO\s+OUTFILE\b", re.I), "File operations not allowed"),
        (re.compile(r"\bLOAD_FILE\b", re.I), "File operations not allowed"),
    ]
    SELECT_START = re.compile(r"^\s*SELECT\b", re.I)
    AGGREGATE = re.compile(r"\b(COUNT|SUM|AVG|MAX|MIN)\s*\(", re.I)
    GROUP_BY = re.compile(r"\bGROUP\s+BY\b", re.I)
    WINDOW = re.compile(r"\bOVER\s*\(", re.I)
    FROM_KEYWORD = re.compile(r"\bFROM\b", re.I)
    # Optional schema, then table: public.orders, "orders", `orders`
    TABLE_NAME = r"(?:[`\"]?(\w+)[`\"]?\.)?[`\"]?(\w+)[`\"]?"
    TABLE_AT_START = re.compile(r"\s*" + TABLE_NAME)
    JOIN_REFERENCE = re.compile(r"\bJOIN\s+" + TABLE_NAME, re.I)
    # Comma separated FROM list, up to the next clause
    FROM_LIST = re.compile(
        r"(.*?)(?=\bWHERE\b|\bGROUP\s+BY\b|\bORDER\s+BY\b|\bHAVING\b|\bLIMIT\b|\bUNION\b"
        r"|\bINTERSECT\b|\bEXCEPT\b|\b(?:INNER|LEFT|RIGHT|FULL|CROSS|NATURAL|JOIN)\b|\)|;|$)",
        re.I | re.S,
    )
    # EXTRACT(MONTH FROM col), SUBSTRING(x FROM 2): FROM that is not a table reference
    FUNCTION_FROM = re.compile(r"\b\w+\s*\((?!\s*SELECT\b)[^()]*\bFROM\b[^()]*\)", re.I)
    LIMIT = re.compile(r"\bLIMIT\s+\d+", re.I)
    DEFAULT_SCHEMAS = {"public", "main"}

    def __init__(self, relationships: Optional[Dict[str, List[str]]] = None, default_limit: int = 100):
        self.relationships = relationships or {}
        self.default_limit = default_limit

    def related_tables(self, tables: Iterable[str]) -> List[str]:
        related = []
        for table in tables:
            for referenced in self.relationships.get(table, []):
                if referenced not in related:
                    related.append(referenced)
        return related

    def select_items(self, sql: str) -> List[str]:
        """Top-level items of the first SELECT list ("COUNT(*) AS n", "status")."""
        match = self.SELECT_START.match(sql)
        if not match:
            return []

        items, current, depth = [], [], 0
        for index in range(match.end(), len(sql)):
            char = sql[index]
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            elif depth == 0:
                if self.FROM_KEYWORD.match(sql, index):
                    break
                if char == ",":
                    items.append("".join(current))
                    current = []
                    continue
            current.append(char)
        items.append("".join(current))

        return [item.strip() for item in items if item.strip()]

    def referenced_tables(self, sql: str) -> List[Tuple[Optional[str], str]]:
        """
        (schema, table) for every table after FROM (comma lists included) or JOIN.

        Subqueries are skipped at their opening parenthesis; their own FROM is
        found separately.
        """
        sql = self.FUNCTION_FROM.sub("", sql)
        tables = []

        for keyword in self.FROM_KEYWORD.finditer(sql):
            from_list = self.FROM_LIST.match(sql, keyword.end()).group(1)
            for item in from_list.split(","):
                match = self.TABLE_AT_START.match(item)
                if match:
                    tables.append((match.group(1), match.group(2)))

        for match in self.JOIN_REFERENCE.finditer(sql):
            tables.append((match.group(1), match.group(2)))

        return tables

    def validate(self, sql: str, allowed_tables: Optional[List[str]] = None) -> ValidationResult:
        errors = []

        for pattern, message in self.DANGEROUS_PATTERNS:
            if pattern.search(sql) and message not in errors:
                errors.append(message)

        if not self.SELECT_START.match(sql):
            errors.append("Query must start with SELECT")

        if self.AGGREGATE.search(sql) and not self.GROUP_BY.search(sql):
            # Window functions are neither aggregated nor plain columns here
            items = [item for item in self.select_items(sql) if not self.WINDOW.search(item)]
            aggregated = [bool(self.AGGREGATE.search(item)) for item in items]
            if any(aggregated) and not all(aggregated):
                errors.append(
                    "Cannot mix aggregate functions with non-aggregated columns without GROUP BY"
                )

        if allowed_tables:
            permitted = set(allowed_tables) | set(self.related_tables(allowed_tables))
            for schema, table in self.referenced_tables(sql):
                name = f"{schema}.{table}" if schema else table
                outside_schema = schema is not None and schema.lower() not in self.DEFAULT_SCHEMAS
                if (outside_schema or table not in permitted) and (
                    f"Table '{name}' is not in the allowed or related tables list" not in errors
                ):
                    errors.append(f"Table '{name}' is not in the allowed or related tables list")

        normalized = sql
        if not self.LIMIT.search(normalized):
            normalized = normalized.rstrip().rstrip(";") + f" LIMIT {self.default_limit};"

        return ValidationResult(valid=not errors, sql=normalized, errors=errors)
