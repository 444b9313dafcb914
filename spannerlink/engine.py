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
Execution engine: sends statements and DML batches and applies the retry protocol.

Recovery is limited to two bounded, immediate retries per call:

1. Session or transaction not found, no transaction active: reset the
   session and send the statement once more.
2. First statement of a read/write transaction failed while carrying the
   "begin" selector: start the transaction with an explicit RPC and send the
   statement once more with the new transaction id.

Everything else is surfaced. ABORTED errors mark the transaction aborted;
a not-found session inside a transaction is turned into an ABORTED error
because the earlier statements of that transaction are lost.
"""

import time
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple

from .batch import BatchKind
from .exceptions import (
    AbortedError,
    BatchUpdateError,
    ConnectionError,
    RemoteError,
    StatusCode,
    aborted_error,
    is_mutation_limit_error,
    is_session_not_found,
    is_transaction_not_found,
)
from .remote import ResultSet, TransactionSelector
from .statement import Statement, StatementType
from .transaction import TransactionContext, TransactionState

if TYPE_CHECKING:
    from .connection import ConnectionManager

# send(session, selector, seqno) -> (result, transaction id returned by the server)
Sender = Callable[[Any, TransactionSelector, Optional[int]], Tuple[Any, Optional[bytes]]]


class ExecutionEngine:
    """
    Routes statements of one connection to the remote client.

    The engine holds no state of its own; session, transaction and batch
    state belong to the ConnectionManager it serves.
    """

    def __init__(self, connection: "ConnectionManager"):
        self.connection = connection

    @property
    def logger(self):
        return self.connection.logger

    @property
    def client(self):
        return self.connection.sessions.client

    def _current_transaction(self) -> Optional[TransactionContext]:
        transaction = self.connection.current_transaction
        if transaction is not None and transaction.state in (TransactionState.ACTIVE, TransactionState.ABORTED):
            return transaction
        return None

    def resolve_selector(self, single_use_selector: Optional[TransactionSelector] = None) -> TransactionSelector:
        """
        Selector for the next request: the active transaction's (bound id or
        begin intent), else the given single-use selector, else a plain
        single-use selector. An aborted transaction has no selector.
        """
        transaction = self.connection.current_transaction
        if transaction is not None and transaction.active:
            return transaction.selector()
        return single_use_selector or TransactionSelector.single_use()

    def execute(
        self,
        statement: Statement,
        statement_type: Optional[StatementType] = None,
        single_use_selector: Optional[TransactionSelector] = None,
    ) -> Optional[ResultSet]:
        """
        Execute one statement.

        A DML statement issued while a DML batch is open is buffered and
        None is returned; it is sent when the batch runs.

        Args::

            statement: Statement to execute
            statement_type: Kind of statement; derived from the SQL when omitted
            single_use_selector: Selector for statements outside a transaction (e.g. a stale read)

        Returns::

            ResultSet, or None for a buffered statement
        """
        if statement_type is None:
            statement_type = statement.statement_type
        batch = self.connection.batch
        if statement_type == StatementType.DML and batch.kind == BatchKind.DML:
            batch.push(statement, BatchKind.DML)
            return None

        sql, params, types = statement.to_request()

        def send(session, selector, seqno):
            result = self.client.execute_query(
                session, sql, params=params, types=types, transaction=selector, seqno=seqno
            )
            return result, getattr(result, "transaction_id", None)

        selector = self.resolve_selector(single_use_selector)
        return self._send_with_recovery(sql, selector, send)

    def run_dml(self, statements: Sequence[Statement]) -> List[int]:
        """
        Send DML statements as one atomic batch.

        The whole batch is the unit of retry: a retry re-sends every statement.

        Returns::

            Row count of each statement, in order
        """
        requests = [statement.to_request() for statement in statements]

        def send(session, selector, seqno):
            response = self.client.batch_update(session, selector, seqno, requests)
            return response.row_counts, response.transaction_id

        description = f"BATCH DML ({len(requests)} statements): {requests[0][0]}"
        selector = self.resolve_selector()
        try:
            row_counts = self._send_with_recovery(description, selector, send)
        except RemoteError:
            self.logger.log_batch(BatchKind.DML.value, "run", len(requests), success=False)
            raise
        self.logger.log_batch(BatchKind.DML.value, "run", len(requests))
        return row_counts

    def run_ddl(self, statements: Sequence[str], wait_until_done: bool = True) -> bool:
        """
        Send DDL statements as one schema-update job.

        Args::

            statements: DDL statements, applied in order
            wait_until_done: Block until the job has finished

        Returns::

            bool: Whether the job is done

        Raises::

            RemoteError: The job's error, if the job failed
        """
        statements = list(statements)
        start_time = time.time()
        job = self.client.update_schema(self.connection.instance_id, self.connection.database_id, statements)
        if wait_until_done:
            job.wait_until_done()
        if job.error is not None:
            self.logger.log_batch(BatchKind.DDL.value, "schema update", len(statements), success=False)
            self.logger.log_error(job.error, context="Schema update")
            raise job.error
        self.logger.log_batch(BatchKind.DDL.value, "schema update", len(statements))
        self.logger.log_performance("schema update", time.time() - start_time, statements=len(statements))
        return job.done

    def _send_with_recovery(self, description: str, selector: TransactionSelector, send: Sender):
        transaction = self._current_transaction()
        if transaction is not None:
            transaction.ensure_usable()

        session_reset = False
        explicit_begin = False
        while True:
            seqno = transaction.next_sequence_number() if transaction is not None else None
            start_time = time.time()
            try:
                result, transaction_id = send(self.connection.sessions.acquire(), selector, seqno)
            except RemoteError as error:
                self.logger.log_query(description, time.time() - start_time, success=False)
                cause = error
                if isinstance(error, BatchUpdateError):
                    if error.code == StatusCode.ABORTED:
                        if transaction is not None:
                            transaction.mark_aborted()
                        if isinstance(error.cause, AbortedError):
                            raise error.cause
                        raise aborted_error(error.message) from error
                    # Batch DML can return both an error and a transaction
                    if transaction is not None and error.transaction_id is not None:
                        transaction.bind_remote_id(error.transaction_id)
                    cause = error.cause or error

                if isinstance(cause, AbortedError):
                    if transaction is not None:
                        transaction.mark_aborted()
                    raise

                if is_session_not_found(cause) or is_transaction_not_found(cause):
                    if session_reset:
                        raise
                    self.connection.sessions.reset()
                    session_reset = True
                    if transaction is not None:
                        # Earlier statements of the transaction are gone with the session
                        transaction.mark_aborted()
                        raise aborted_error() from error
                    self.logger.log_retry("session or transaction not found", statement=description)
                    continue

                if is_mutation_limit_error(cause):
                    raise

                if (
                    not explicit_begin
                    and transaction is not None
                    and transaction.active
                    and not transaction.bound
                    and selector.is_begin_read_write
                ):
                    selector = self._begin_after_failed_first_statement(transaction, error)
                    explicit_begin = True
                    self.logger.log_retry("first statement of transaction failed", statement=description)
                    continue

                raise
            else:
                elapsed = time.time() - start_time
                if transaction is not None and transaction_id is not None:
                    transaction.bind_remote_id(transaction_id)
                affected = result.affected_rows if isinstance(result, ResultSet) and not result.columns else None
                self.logger.log_query(description, elapsed, affected, success=True)
                return result

    def _begin_after_failed_first_statement(
        self, transaction: TransactionContext, original_error: RemoteError
    ) -> TransactionSelector:
        try:
            transaction_id = transaction.force_begin()
        except (RemoteError, ConnectionError) as begin_error:
            self.logger.log_error(begin_error, context="Explicit begin after failed first statement")
            raise original_error
        return TransactionSelector.with_id(transaction_id)
