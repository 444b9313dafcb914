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
ConnectionManager: one logical connection to the remote database.
"""

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, List, Optional, Union

from .batch import BatchBuffer, BatchKind
from .engine import ExecutionEngine
from .exceptions import AbortedError, NoDatabaseError, PreconditionError, SpannerLinkError, retry_delay_from_aborted
from .logger import SpannerLinkLogger, create_default_logger
from .registry import ClientRegistry
from .remote import IsolationLevel, ResultSet, TransactionSelector
from .session import SessionHandle
from .statement import Statement, StatementType
from .transaction import TransactionContext, TransactionState

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_BACKOFF = 0.1
DEFAULT_MAX_BACKOFF = 32.0


class ConnectionManager:
    """
    One logical connection: a lazily created session, at most one
    transaction and at most one open batch.

    A ConnectionManager is not thread-safe. Use one per concurrent unit of
    work; connections to the same database share a remote client through
    the ClientRegistry.

    Example::

        registry = ClientRegistry(make_client)
        with ConnectionManager(get_config(), registry) as conn:
            conn.begin_transaction()
            conn.execute_query("INSERT INTO users (id, name) VALUES (@id, @name)", {"id": 1, "name": "a"})
            conn.commit_transaction()
    """

    def __init__(
        self,
        config: Dict[str, Any],
        registry: ClientRegistry,
        logger: Optional[SpannerLinkLogger] = None,
        sql_log_mode: str = "auto",
        slow_query_threshold: float = 1.0,
    ):
        """
        Initialize the connection. No RPC is made until the session is first needed.

        Args::

            config: Connection parameters (see spannerlink.config.get_config)
            registry: Registry providing the remote client for the target database
            logger: Custom logger instance. If None, creates a default logger
            sql_log_mode: SQL logging mode of the default logger ('off', 'auto', 'simple', 'full')
            slow_query_threshold: Threshold in seconds for slow query warnings of the default logger
        """
        self.config = config
        self.instance_id = config["instance"]
        self.database_id = config["database"]
        self.default_isolation = config.get("isolation_level")

        if logger is not None:
            self.logger = logger
        else:
            self.logger = create_default_logger(sql_log_mode=sql_log_mode, slow_query_threshold=slow_query_threshold)

        client = registry.client_for(config)
        stale_minutes = config.get("session_stale_minutes") or 50
        self.sessions = SessionHandle(
            client, self.instance_id, self.database_id, self.logger, stale_after=stale_minutes * 60
        )
        self.batch = BatchBuffer()
        self.current_transaction: Optional[TransactionContext] = None
        self.last_batch_result: Any = None
        self._engine = ExecutionEngine(self)
        self._database = None

    # Session

    @property
    def session(self) -> Any:
        """The remote session, created on first access"""
        return self.sessions.acquire()

    def connect(self) -> Any:
        """Create the session now instead of on the first statement"""
        return self.sessions.acquire()

    def active(self) -> bool:
        """Check whether the connection has a usable session. Never raises."""
        return self.sessions.is_active()

    def disconnect(self) -> None:
        """
        Release the session. Any open batch and transaction are discarded.

        Raises::

            RemoteError: If the release RPC fails; the session is forgotten anyway
        """
        self.batch.abort()
        self.current_transaction = None
        self.sessions.release()

    def reset(self) -> bool:
        """Discard the session, batch and transaction, and start over with a fresh session"""
        self.batch.abort()
        self.current_transaction = None
        self.sessions.reset()
        return True

    # Statements

    def execute_query(
        self,
        sql_or_stmt: Union[str, Statement, Any],
        params: Optional[Dict[str, Any]] = None,
        types: Optional[Dict[str, Any]] = None,
        statement_type: Union[StatementType, str, None] = None,
        single_use_selector: Optional[TransactionSelector] = None,
    ) -> Optional[ResultSet]:
        """
        Execute a statement in the current transaction, or on its own outside of one.

        Args::

            sql_or_stmt: SQL text with @name parameters, a Statement, or a SQLAlchemy clause
            params: Parameter values keyed by name
            types: Explicit parameter types keyed by name (type codes or SQLAlchemy types)
            statement_type: Kind of statement; derived from the SQL when omitted
            single_use_selector: Selector for a statement outside a transaction

        Returns::

            ResultSet, or None when the statement was added to an open DML batch

        Example::

            result = conn.execute_query("SELECT name FROM users WHERE id = @id", {"id": 1})
            name = result.scalar()
        """
        statement = Statement.build(sql_or_stmt, params, types)
        if isinstance(statement_type, str):
            statement_type = StatementType(statement_type.lower())
        return self._engine.execute(statement, statement_type, single_use_selector)

    def execute_ddl(self, statements: Union[str, List[str]], wait_until_done: bool = True) -> Optional[bool]:
        """
        Run schema statements as one schema-update job, or buffer them in an open DDL batch.

        Args::

            statements: One DDL statement or a list of them
            wait_until_done: Block until the job has finished

        Returns::

            Whether the job is done, or None when the statements were buffered

        Raises::

            PreconditionError: If a transaction is open
        """
        if isinstance(statements, str):
            statements = [statements]
        transaction = self.current_transaction
        if transaction is not None and transaction.state in (TransactionState.ACTIVE, TransactionState.ABORTED):
            raise PreconditionError("DDL cannot be executed during a transaction")
        if self.batch.kind == BatchKind.DDL:
            for statement in statements:
                self.batch.push(statement, BatchKind.DDL)
            return None
        return self._engine.run_ddl(statements, wait_until_done=wait_until_done)

    def truncate(self, table: str) -> None:
        """Delete all rows of a table"""
        start_time = time.time()
        self.sessions.client.delete_rows(self.sessions.acquire(), table)
        self.logger.log_performance("truncate", time.time() - start_time, table=table)

    # Batches

    @property
    def ddl_batch_active(self) -> bool:
        return self.batch.kind == BatchKind.DDL

    @property
    def dml_batch_active(self) -> bool:
        return self.batch.kind == BatchKind.DML

    def start_batch_ddl(self) -> None:
        """
        Start buffering DDL statements.

        Raises::

            PreconditionError: If a batch is already open
        """
        self.batch.start(BatchKind.DDL)
        self.logger.log_batch(BatchKind.DDL.value, "start", 0)

    def start_batch_dml(self) -> None:
        """
        Start buffering DML statements.

        Raises::

            PreconditionError: If a batch is already open
        """
        self.batch.start(BatchKind.DML)
        self.logger.log_batch(BatchKind.DML.value, "start", 0)

    def run_batch(self) -> Any:
        """
        Send the open batch. The batch is closed whether or not the run succeeds.

        Returns::

            Row counts for a DML batch, job completion for a DDL batch,
            None for an empty batch

        Raises::

            PreconditionError: If no batch is open
        """
        self.last_batch_result = self.batch.run(self._engine)
        return self.last_batch_result

    def abort_batch(self) -> None:
        """Discard the open batch, if any"""
        if self.batch.active:
            self.logger.log_batch(self.batch.kind.value, "abort", len(self.batch.pending))
        self.batch.abort()

    @contextmanager
    def ddl_batch(self) -> Generator["ConnectionManager", None, None]:
        """
        Buffer the DDL statements executed in the block and run them as one job on exit.

        The batch is discarded if the block raises. The job result is kept in
        ``last_batch_result``.

        Example::

            with conn.ddl_batch():
                conn.execute_ddl("CREATE TABLE a (id INT64) PRIMARY KEY (id)")
                conn.execute_ddl("CREATE INDEX a_by_id ON a (id)")
        """
        self.start_batch_ddl()
        try:
            yield self
        except BaseException:
            self.abort_batch()
            raise
        self.run_batch()

    @contextmanager
    def dml_batch(self) -> Generator["ConnectionManager", None, None]:
        """
        Buffer the DML statements executed in the block and send them as one batch on exit.

        The batch is discarded if the block raises. Per-statement row counts
        are kept in ``last_batch_result``.

        Example::

            with conn.dml_batch():
                conn.execute_query("UPDATE a SET v = 1 WHERE id = 1")
                conn.execute_query("UPDATE a SET v = 2 WHERE id = 2")
            row_counts = conn.last_batch_result
        """
        self.start_batch_dml()
        try:
            yield self
        except BaseException:
            self.abort_batch()
            raise
        self.run_batch()

    # Transactions

    def begin_transaction(
        self,
        isolation: Union[IsolationLevel, str, None] = None,
        exclude_txn_from_change_streams: bool = False,
    ) -> TransactionContext:
        """
        Begin a transaction. The server transaction starts with the first statement.

        Args::

            isolation: Isolation level; the configured default when omitted
            exclude_txn_from_change_streams: Keep the transaction's writes out of change streams

        Returns::

            TransactionContext

        Raises::

            PreconditionError: If a transaction is already active
        """
        if self.current_transaction is not None and self.current_transaction.active:
            raise PreconditionError("Nested transactions are not allowed")
        transaction = TransactionContext(
            self.sessions,
            isolation if isolation is not None else self.default_isolation,
            exclude_txn_from_change_streams,
        )
        transaction.begin()
        self.current_transaction = transaction
        return transaction

    def commit_transaction(self):
        """
        Commit the current transaction.

        Returns::

            Commit timestamp, or None when nothing was sent to the server

        Raises::

            PreconditionError: If there is no active transaction
            AbortedError: If the transaction was aborted; roll back and replay it
        """
        transaction = self.current_transaction
        if transaction is None:
            raise PreconditionError("This connection does not have an active transaction")
        try:
            return transaction.commit()
        finally:
            if transaction.state == TransactionState.COMMITTED:
                self.current_transaction = None

    def rollback_transaction(self) -> None:
        """
        Roll back the current transaction. Also closes an aborted transaction.

        Raises::

            PreconditionError: If there is no transaction to roll back
        """
        transaction = self.current_transaction
        if transaction is None:
            raise PreconditionError("This connection does not have an active transaction")
        try:
            transaction.rollback()
        finally:
            if transaction.state == TransactionState.ROLLED_BACK:
                self.current_transaction = None

    def transaction_selector(self) -> TransactionSelector:
        """Selector the next statement would be sent with"""
        return self._engine.resolve_selector()

    def run_transaction(
        self,
        fn: Callable[["ConnectionManager"], Any],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        isolation: Union[IsolationLevel, str, None] = None,
        exclude_txn_from_change_streams: bool = False,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Any:
        """
        Run fn(connection) in a transaction, replaying it when it is aborted.

        The delay before a replay is the server's retry hint when present,
        otherwise an exponential backoff capped at max_backoff.

        Args::

            fn: Unit of work; receives this connection
            max_attempts: Attempts before the AbortedError is raised to the caller
            isolation: Isolation level of each attempt
            exclude_txn_from_change_streams: Keep the transaction's writes out of change streams
            initial_backoff: First backoff delay in seconds
            max_backoff: Upper bound of the backoff delay in seconds
            sleep: Sleep function

        Returns::

            Return value of fn

        Example::

            def transfer(conn):
                conn.execute_query("UPDATE accounts SET balance = balance - 10 WHERE id = 1")
                conn.execute_query("UPDATE accounts SET balance = balance + 10 WHERE id = 2")

            conn.run_transaction(transfer)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = 0
        while True:
            attempt += 1
            self.begin_transaction(isolation, exclude_txn_from_change_streams)
            try:
                result = fn(self)
                self.commit_transaction()
                return result
            except AbortedError as e:
                self._rollback_after_failure()
                if attempt >= max_attempts:
                    self.logger.log_error(e, context=f"Transaction aborted {attempt} times")
                    raise
                delay = retry_delay_from_aborted(e)
                if delay is None:
                    delay = min(initial_backoff * (2 ** (attempt - 1)), max_backoff)
                self.logger.log_retry("transaction aborted", attempt=attempt, delay=f"{delay:.3f}s")
                sleep(delay)
            except Exception:
                self._rollback_after_failure()
                raise

    def _rollback_after_failure(self):
        # Must not replace the error that ended the attempt
        if self.current_transaction is None:
            return
        try:
            self.rollback_transaction()
        except SpannerLinkError as rollback_error:
            self.logger.log_error(rollback_error, context="Rollback after failed transaction")

    # Database administration

    def create_database(self) -> Any:
        """
        Create the configured database and wait for the job to finish.

        Returns::

            Database handle

        Raises::

            RemoteError: The job's error, if creation failed
        """
        start_time = time.time()
        job = self.sessions.client.create_database(self.instance_id, self.database_id)
        job.wait_until_done()
        if job.error is not None:
            self.logger.log_error(job.error, context="Create database")
            raise job.error
        self.logger.log_performance("create database", time.time() - start_time, database=self.database_id)
        self._database = job.database
        return self._database

    def database(self) -> Any:
        """
        Database handle, looked up on first use.

        Raises::

            NoDatabaseError: If the configured database does not exist
        """
        if self._database is None:
            database = self.sessions.client.get_database(self.instance_id, self.database_id)
            if database is None:
                raise NoDatabaseError(f"database '{self.database_id}' not found on instance '{self.instance_id}'")
            self._database = database
        return self._database

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
