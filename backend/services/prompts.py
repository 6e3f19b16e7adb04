"""
Schema descriptor and prompt templates for SQL generation.

Everything here is pure string templating; nothing in this module can fail.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

from langchain_core.prompts import PromptTemplate


# ---------------------------
# Schema descriptor
# ---------------------------

SCHEMA_DESCRIPTION = """
Table products (
  id INT PRIMARY KEY,
  name VARCHAR,
  description TEXT,
  price DECIMAL(10,2),
  created_at TIMESTAMP,
  updated_at TIMESTAMP
) -- Stores product information like name and price;

Table users (
  id INT PRIMARY KEY,
  username VARCHAR UNIQUE,
  email VARCHAR UNIQUE,
  password VARCHAR,
  created_at TIMESTAMP
) -- Stores user information like username and email;

Table orders (
  id INT PRIMARY KEY,
  user_id INT,
  subtotal DECIMAL(10,2),
  discount DECIMAL(10,2),
  total_price DECIMAL(10,2),
  created_at TIMESTAMP,
  FOREIGN KEY (user_id) REFERENCES users(id)
) -- Stores order details like total price and user;

Table order_products (
  order_id INT,
  product_id INT,
  FOREIGN KEY (order_id) REFERENCES orders(id),
  FOREIGN KEY (product_id) REFERENCES products(id)
) -- Links orders to products (many-to-many);
""".strip()

# table name -> mandatory alias
TABLE_ALIASES: Dict[str, str] = {
    "products": "p",
    "users": "u",
    "orders": "o",
    "order_products": "op",
}

KNOWN_TABLES = frozenset(TABLE_ALIASES)


# ---------------------------
# Prompt constants
# ---------------------------

SQL_GENERATION_PROMPT = """Using the schema: {schema}
Generate a valid MySQL SELECT query for the request: {user_request}
Rules:
- ONLY return the query as a single line of text.
- NO explanations, reasoning, comments, or extra text.
- Only generate SELECT queries (no DROP, DELETE, UPDATE, INSERT, ALTER, TRUNCATE).
- Always use table aliases in the format 'table_name alias' in the FROM and JOIN clauses: {alias_hint}. Never write 'FROM p'.
- For requests asking for a count (e.g., "total products", "how many orders"), use COUNT(*) with the alias 'count' (e.g., 'SELECT COUNT(*) AS count FROM products p').
- For averages (e.g., "average price"), use AVG(column) with the alias 'avg_<column>' (e.g., 'SELECT AVG(p.price) AS avg_price FROM products p').
- For requests listing items (e.g., "get all products"), select one descriptive string column and one numeric column for charting (e.g., 'SELECT p.name, p.price FROM products p').
- For time-series requests (e.g., "per month", "over time", "by date", "monthly", "trend"), GROUP BY a formatted date expression aliased 'month' (e.g., DATE_FORMAT(o.created_at, '%Y-%m') AS month) and order by it.
- For conditions (e.g., "greater than", "less than"), use a WHERE clause (e.g., 'WHERE p.price > 50').
- Examples:
  - Request: "total products?" -> Query: "SELECT COUNT(*) AS count FROM products p"
  - Request: "Get all products with a price greater than 50" -> Query: "SELECT p.name, p.price FROM products p WHERE p.price > 50"
  - Request: "average, min, max price of products" -> Query: "SELECT AVG(p.price) AS avg_price, MIN(p.price) AS min_price, MAX(p.price) AS max_price FROM products p"
  - Request: "orders per month in 2025" -> Query: "SELECT DATE_FORMAT(o.created_at, '%Y-%m') AS month, COUNT(*) AS count FROM orders o WHERE YEAR(o.created_at) = 2025 GROUP BY month ORDER BY month"
  - Request: "total products sold per month" -> Query: "SELECT DATE_FORMAT(o.created_at, '%Y-%m') AS month, COUNT(op.product_id) AS count FROM orders o JOIN order_products op ON op.order_id = o.id GROUP BY month ORDER BY month"
- Ensure the query is valid MySQL syntax, references actual table names, and uses aliases correctly.
"""


SQL_FEEDBACK_PROMPT = """{base_prompt}
Your previous answer was rejected.
REJECTED_QUERY: {rejected_sql}
REASON: {reason}
Return ONE corrected query that fixes the reason above, following every rule.
"""


SHEET_SUMMARY_PROMPT = """Analyze this Excel dataset and provide a concise summary (max 50 words) for: "{user_request}"

Dataset info:
- Total rows: {row_count}
- Columns: {columns}
- Sample data: {sample_rows}

Focus on key metrics, trends, and insights relevant to the request.
Return only the summary text without explanations.
"""


SQL_TEMPLATE = PromptTemplate.from_template(SQL_GENERATION_PROMPT)
FEEDBACK_TEMPLATE = PromptTemplate.from_template(SQL_FEEDBACK_PROMPT)
SUMMARY_TEMPLATE = PromptTemplate.from_template(SHEET_SUMMARY_PROMPT)


def _alias_hint() -> str:
    return ", ".join(f"'{table} {alias}'" for table, alias in TABLE_ALIASES.items())


def build_prompt(schema: str, user_request: str) -> str:
    return SQL_TEMPLATE.format(
        schema=schema,
        user_request=user_request,
        alias_hint=_alias_hint(),
    )


def build_feedback_prompt(schema: str, user_request: str, rejected_sql: str, reason: str) -> str:
    """Re-prompt carrying the validator's rejection reason."""
    return FEEDBACK_TEMPLATE.format(
        base_prompt=build_prompt(schema, user_request),
        rejected_sql=rejected_sql or "none",
        reason=reason,
    )


def build_summary_prompt(user_request: str, columns: Sequence[str], rows: List[Dict[str, Any]]) -> str:
    return SUMMARY_TEMPLATE.format(
        user_request=user_request,
        row_count=len(rows),
        columns=", ".join(str(c) for c in columns),
        sample_rows=json.dumps(rows[:10], default=str, ensure_ascii=True),
    )
