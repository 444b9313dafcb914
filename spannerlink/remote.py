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
Remote database client contract.

The transport that talks to the database is not part of this SDK. Anything
implementing RemoteDatabaseClient can back a ConnectionManager; every method
blocks until the RPC completes and raises a classified RemoteError
(see spannerlink.exceptions) on failure.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class IsolationLevel(Enum):
    """
    Isolation modes for transactions.

    SERIALIZABLE and REPEATABLE_READ start read/write transactions;
    READ_ONLY starts a read-only transaction that never commits remotely.
    """

    SERIALIZABLE = "serializable"
    REPEATABLE_READ = "repeatable_read"
    READ_ONLY = "read_only"

    @property
    def read_write(self) -> bool:
        return self is not IsolationLevel.READ_ONLY


class SelectorKind(Enum):
    SINGLE_USE = "single_use"
    BEGIN = "begin"
    ID = "id"


class TransactionSelector:
    """
    Request modifier telling the server how a statement relates to a transaction.

    - single_use: run the statement in its own short-lived transaction
    - begin: start a new transaction with this statement and return its id
    - id: run the statement in an already started transaction
    """

    def __init__(
        self,
        kind: SelectorKind,
        transaction_id: Optional[bytes] = None,
        isolation: Optional[IsolationLevel] = None,
        exclude_txn_from_change_streams: bool = False,
    ):
        self.kind = kind
        self.transaction_id = transaction_id
        self.isolation = isolation
        self.exclude_txn_from_change_streams = exclude_txn_from_change_streams

    @classmethod
    def single_use(cls) -> "TransactionSelector":
        return cls(SelectorKind.SINGLE_USE)

    @classmethod
    def begin(
        cls, isolation: IsolationLevel, exclude_txn_from_change_streams: bool = False
    ) -> "TransactionSelector":
        return cls(
            SelectorKind.BEGIN,
            isolation=isolation,
            exclude_txn_from_change_streams=exclude_txn_from_change_streams,
        )

    @classmethod
    def with_id(cls, transaction_id: bytes) -> "TransactionSelector":
        return cls(SelectorKind.ID, transaction_id=transaction_id)

    @property
    def is_begin(self) -> bool:
        return self.kind == SelectorKind.BEGIN

    @property
    def is_begin_read_write(self) -> bool:
        return self.is_begin and self.isolation is not None and self.isolation.read_write

    def __eq__(self, other):
        if not isinstance(other, TransactionSelector):
            return NotImplemented
        return (
            self.kind == other.kind
            and self.transaction_id == other.transaction_id
            and self.isolation == other.isolation
            and self.exclude_txn_from_change_streams == other.exclude_txn_from_change_streams
        )

    def __repr__(self):
        if self.kind == SelectorKind.ID:
            return f"TransactionSelector(id={self.transaction_id!r})"
        if self.kind == SelectorKind.BEGIN:
            return f"TransactionSelector(begin={self.isolation.value})"
        return "TransactionSelector(single_use)"


class ResultSet:
    """
    Result of a single statement.

    Attributes::

        columns (List[str]): Column names in the result set
        rows (List[Tuple[Any, ...]]): Row data
        affected_rows (int): Number of rows modified by a DML statement
        transaction_id (Optional[bytes]): Transaction the server started for a "begin" selector
    """

    def __init__(
        self,
        columns: Optional[List[str]] = None,
        rows: Optional[List[Tuple[Any, ...]]] = None,
        affected_rows: int = 0,
        transaction_id: Optional[bytes] = None,
    ):
        self.columns = columns or []
        self.rows = rows or []
        self.affected_rows = affected_rows
        self.transaction_id = transaction_id
        self._cursor = 0

    def fetchall(self) -> List[Tuple[Any, ...]]:
        """Fetch all remaining rows"""
        remaining_rows = self.rows[self._cursor :]
        self._cursor = len(self.rows)
        return remaining_rows

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        """Fetch one row"""
        if self._cursor < len(self.rows):
            row = self.rows[self._cursor]
            self._cursor += 1
            return row
        return None

    def scalar(self) -> Any:
        """Get scalar value (first column of first row)"""
        if self.rows and self.rows[0]:
            return self.rows[0][0]
        return None

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)


class BatchUpdateResponse:
    """Response of a batch DML request: one result set per statement, in order"""

    def __init__(self, result_sets: Optional[List[ResultSet]] = None):
        self.result_sets = result_sets or []

    @property
    def row_counts(self) -> List[int]:
        return [result_set.affected_rows for result_set in self.result_sets]

    @property
    def transaction_id(self) -> Optional[bytes]:
        # Only the first statement of a batch can carry a newly started transaction
        if self.result_sets:
            return self.result_sets[0].transaction_id
        return None


class SchemaJob(ABC):
    """Long-running schema operation (update schema, create database)"""

    @property
    @abstractmethod
    def done(self) -> bool:
        """True once the operation has finished, successfully or not"""

    @property
    @abstractmethod
    def error(self) -> Optional[Exception]:
        """Classified error of a failed operation, None on success"""

    @abstractmethod
    def wait_until_done(self) -> None:
        """Block until the operation has finished"""

    @property
    def database(self) -> Any:
        """Database handle produced by a create-database job"""
        return None


class RemoteDatabaseClient(ABC):
    """
    Black-box client for the remote database.

    Implementations wrap the RPC transport. Session references are opaque;
    they are only handed back to the client.
    """

    @abstractmethod
    def create_session(self, instance: str, database: str) -> Any:
        """Create a new session against the database"""

    @abstractmethod
    def release_session(self, session: Any) -> None:
        """Delete a session on the server"""

    @abstractmethod
    def execute_query(
        self,
        session: Any,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        types: Optional[Dict[str, str]] = None,
        transaction: Optional[TransactionSelector] = None,
        seqno: Optional[int] = None,
    ) -> ResultSet:
        """Execute one statement"""

    @abstractmethod
    def batch_update(
        self,
        session: Any,
        transaction: Optional[TransactionSelector],
        seqno: Optional[int],
        statements: Sequence[Tuple[str, Optional[Dict[str, Any]], Optional[Dict[str, str]]]],
    ) -> BatchUpdateResponse:
        """
        Execute DML statements as one atomic batch.

        Each statement is a (sql, params, type codes) tuple. Raises
        BatchUpdateError when a statement fails after earlier ones succeeded.
        """

    @abstractmethod
    def begin_transaction(self, session: Any, selector: TransactionSelector) -> bytes:
        """Start a transaction explicitly and return its id"""

    @abstractmethod
    def commit(self, session: Any, transaction_id: bytes) -> datetime:
        """Commit a transaction and return the commit timestamp"""

    @abstractmethod
    def rollback(self, session: Any, transaction_id: bytes) -> None:
        """Roll back a transaction"""

    @abstractmethod
    def update_schema(self, instance: str, database: str, statements: List[str]) -> SchemaJob:
        """Start a schema update job with the given DDL statements"""

    @abstractmethod
    def delete_rows(self, session: Any, table: str) -> None:
        """Delete all rows of a table"""

    @abstractmethod
    def create_database(self, instance: str, database: str) -> SchemaJob:
        """Start a create-database job"""

    @abstractmethod
    def get_database(self, instance: str, database: str) -> Any:
        """Return a database handle, or None if the database does not exist"""
