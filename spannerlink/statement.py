# Copyright 2021 - 2022 Matrix Origin
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Statements and typed parameters.

A Statement is SQL text with named parameters (``@name``) and the type code
of each parameter. Statements can be built from plain strings or compiled
from SQLAlchemy clauses.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import types as sqltypes
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.sql.elements import ClauseElement

from .exceptions import QueryError

TYPE_CODES = ("BOOL", "INT64", "FLOAT64", "NUMERIC", "STRING", "BYTES", "TIMESTAMP", "DATE", "JSON", "ARRAY")

# Order matters: subclasses before their bases (Float < Numeric, DateTime vs Date)
_SQLALCHEMY_TYPE_CODES = (
    (sqltypes.Boolean, "BOOL"),
    (sqltypes.Integer, "INT64"),
    (sqltypes.Float, "FLOAT64"),
    (sqltypes.Numeric, "NUMERIC"),
    (sqltypes.DateTime, "TIMESTAMP"),
    (sqltypes.Date, "DATE"),
    (sqltypes.JSON, "JSON"),
    (sqltypes.ARRAY, "ARRAY"),
    (sqltypes.LargeBinary, "BYTES"),
    (sqltypes.String, "STRING"),
)

_LEADING_NOISE = re.compile(r"\A(?:\s|--[^\n]*(?:\n|\Z)|#[^\n]*(?:\n|\Z)|/\*.*?\*/|@\{[^}]*\})*", re.DOTALL)
_FIRST_KEYWORD = re.compile(r"\(*\s*([A-Za-z]+)")

_DML_KEYWORDS = {"INSERT", "UPDATE", "DELETE"}
_DDL_KEYWORDS = {"CREATE", "ALTER", "DROP", "GRANT", "REVOKE", "RENAME", "ANALYZE"}
_QUERY_KEYWORDS = {"SELECT", "WITH", "GRAPH", "CALL", "SHOW", "EXPLAIN"}


class StatementType(Enum):
    """Kind of statement, derived from its leading keyword"""

    QUERY = "query"
    DML = "dml"
    DDL = "ddl"
    UNKNOWN = "unknown"


def classify_statement(sql: str) -> StatementType:
    """
    Classify a SQL statement by its first keyword.

    Leading whitespace, comments and statement hints (``@{...}``) are skipped.

    Args::

        sql: SQL statement text

    Returns::

        StatementType
    """
    remainder = sql[_LEADING_NOISE.match(sql).end():]
    match = _FIRST_KEYWORD.match(remainder)
    if not match:
        return StatementType.UNKNOWN
    keyword = match.group(1).upper()
    if keyword in _DML_KEYWORDS:
        return StatementType.DML
    if keyword in _DDL_KEYWORDS:
        return StatementType.DDL
    if keyword in _QUERY_KEYWORDS:
        return StatementType.QUERY
    return StatementType.UNKNOWN


def type_code_for(explicit: Any) -> str:
    """
    Resolve an explicit parameter type to a type code.

    Args::

        explicit: A type code string ("INT64"), a SQLAlchemy type class
                  (sqlalchemy.BigInteger) or a SQLAlchemy type instance (sqlalchemy.String(20))

    Returns::

        str: Type code

    Raises::

        QueryError: If the type is not supported
    """
    if isinstance(explicit, str):
        code = explicit.upper()
        if code not in TYPE_CODES:
            raise QueryError(f"Unsupported parameter type '{explicit}'")
        return code
    if isinstance(explicit, type) and issubclass(explicit, sqltypes.TypeEngine):
        explicit = explicit()
    if isinstance(explicit, sqltypes.TypeEngine):
        for type_class, code in _SQLALCHEMY_TYPE_CODES:
            if isinstance(explicit, type_class):
                return code
    raise QueryError(f"Unsupported parameter type {explicit!r}")


def infer_type_code(value: Any) -> Optional[str]:
    """Infer the type code of a parameter value; None for NULL values"""
    if value is None:
        return None
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    if isinstance(value, Decimal):
        return "NUMERIC"
    if isinstance(value, str):
        return "STRING"
    if isinstance(value, (bytes, bytearray)):
        return "BYTES"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, date):
        return "DATE"
    if isinstance(value, dict):
        return "JSON"
    if isinstance(value, (list, tuple)):
        return "ARRAY"
    raise QueryError(f"Cannot infer parameter type for value of type {type(value).__name__}")


def to_input_params_and_types(
    params: Optional[Dict[str, Any]], types: Optional[Dict[str, Any]] = None
) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, str]]]:
    """
    Pair each parameter with a type code.

    Explicit types win over inferred ones. Parameters that are None and
    have no explicit type are left untyped.

    Args::

        params: Parameter values keyed by name
        types: Optional explicit types keyed by name

    Returns::

        Tuple of (params, type codes), both None when there are no parameters
    """
    if not params:
        return None, None
    types = types or {}
    unknown = set(types) - set(params)
    if unknown:
        raise QueryError(f"Types given for unknown parameters: {sorted(unknown)}")

    type_codes = {}
    for name, value in params.items():
        if name in types:
            type_codes[name] = type_code_for(types[name])
        else:
            code = infer_type_code(value)
            if code is not None:
                type_codes[name] = code
    return dict(params), type_codes


class Statement:
    """
    One SQL statement with named parameters.

    Attributes::

        sql (str): Statement text, parameters written as @name
        params (Optional[Dict[str, Any]]): Parameter values
        types (Optional[Dict[str, Any]]): Explicit parameter types
    """

    def __init__(self, sql: str, params: Optional[Dict[str, Any]] = None, types: Optional[Dict[str, Any]] = None):
        if not isinstance(sql, str) or not sql.strip():
            raise QueryError("Statement SQL must be a non-empty string")
        self.sql = sql
        self.params = params
        self.types = types

    @classmethod
    def from_clause(cls, clause: ClauseElement, params: Optional[Dict[str, Any]] = None) -> "Statement":
        """
        Compile a SQLAlchemy clause into a statement.

        Expanding parameters (``col.in_([...])``) are rendered as one
        parameter per element, ``:name`` placeholders are rewritten to
        ``@name`` and the bind parameter types become explicit parameter
        types.

        Args::

            clause: SQLAlchemy clause, e.g. text("... WHERE id = :id").bindparams(id=1)
            params: Parameter values, overriding bound values

        Returns::

            Statement

        Raises::

            QueryError: If a bind parameter has neither a bound nor a supplied value
        """
        compiled = clause.compile()
        try:
            expanded = compiled.construct_expanded_state(params or None)
        except InvalidRequestError as e:
            raise QueryError(f"Cannot compile statement: {e}") from e

        values = dict(expanded.parameters)
        types = {}
        for bind, name in compiled.bind_names.items():
            if isinstance(bind.type, sqltypes.NullType):
                continue
            for rendered in expanded.parameter_expansion.get(name, [name]):
                if rendered in values:
                    types[rendered] = bind.type

        sql = expanded.statement
        for name in sorted(values, key=len, reverse=True):
            sql = re.sub(r"(?<![:\w]):%s\b" % re.escape(name), "@" + name, sql)

        return cls(sql, values or None, types or None)

    @classmethod
    def build(cls, sql_or_stmt, params: Optional[Dict[str, Any]] = None, types: Optional[Dict[str, Any]] = None):
        """Build a statement from a SQL string, a SQLAlchemy clause, or an existing Statement"""
        if isinstance(sql_or_stmt, Statement):
            return sql_or_stmt
        if isinstance(sql_or_stmt, ClauseElement):
            statement = cls.from_clause(sql_or_stmt, params)
            if types:
                statement.types = {**(statement.types or {}), **types}
            return statement
        return cls(sql_or_stmt, params, types)

    @property
    def statement_type(self) -> StatementType:
        return classify_statement(self.sql)

    def to_request(self) -> Tuple[str, Optional[Dict[str, Any]], Optional[Dict[str, str]]]:
        """SQL text, parameter values and parameter type codes, ready for the remote client"""
        params, types = to_input_params_and_types(self.params, self.types)
        return self.sql, params, types

    def __eq__(self, other):
        if not isinstance(other, Statement):
            return NotImplemented
        return self.sql == other.sql and self.params == other.params and self.types == other.types

    def __repr__(self):
        return f"Statement(sql='{self.sql}', params={self.params})"
