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
Transaction context for one logical transaction on a connection.

Transactions begin lazily: begin() performs no RPC. The first statement is
sent with a "begin" selector and the id the server returns is bound to the
context. Only when that first statement fails is the transaction started
with an explicit begin-transaction RPC (see force_begin()).
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from .exceptions import (
    AbortedError,
    NotFoundError,
    PreconditionError,
    aborted_error,
    is_session_not_found,
    is_transaction_not_found,
)
from .remote import IsolationLevel, TransactionSelector
from .session import SessionHandle


class TransactionState(Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


class TransactionContext:
    """
    One logical transaction.

    Attributes::

        isolation (IsolationLevel): Isolation mode of the transaction
        exclude_txn_from_change_streams (bool): Keep this transaction's writes out of change streams
        state (TransactionState): Current state
        transaction_id (Optional[bytes]): Server transaction id, bound lazily
        commit_timestamp (Optional[datetime]): Set after a successful remote commit
    """

    def __init__(
        self,
        sessions: SessionHandle,
        isolation: Union[IsolationLevel, str, None] = None,
        exclude_txn_from_change_streams: bool = False,
    ):
        self._sessions = sessions
        self.logger = sessions.logger
        self.isolation = _to_isolation(isolation)
        self.exclude_txn_from_change_streams = exclude_txn_from_change_streams
        self.state = TransactionState.NOT_STARTED
        self.transaction_id: Optional[bytes] = None
        self.commit_timestamp: Optional[datetime] = None
        self._sequence_number = 0

    @property
    def active(self) -> bool:
        return self.state == TransactionState.ACTIVE

    @property
    def aborted(self) -> bool:
        return self.state == TransactionState.ABORTED

    @property
    def bound(self) -> bool:
        return self.transaction_id is not None

    @property
    def read_write(self) -> bool:
        return self.isolation.read_write

    def begin(self) -> "TransactionContext":
        """Mark the transaction active. The server transaction starts with the first statement."""
        if self.state != TransactionState.NOT_STARTED:
            raise PreconditionError(f"Transaction cannot begin from state {self.state.value}")
        self.state = TransactionState.ACTIVE
        self.logger.log_transaction("begin", isolation=self.isolation.value)
        return self

    def next_sequence_number(self) -> int:
        """Return the sequence number for the next request in this transaction"""
        number = self._sequence_number
        self._sequence_number += 1
        return number

    def mark_aborted(self) -> None:
        if self.state == TransactionState.ACTIVE:
            self.state = TransactionState.ABORTED
            self.logger.log_transaction("aborted", success=False)

    def ensure_usable(self) -> None:
        """
        Fail fast for a transaction that can no longer run statements.

        Raises::

            AbortedError: If the transaction was aborted
            PreconditionError: If the transaction is not active
        """
        if self.state == TransactionState.ABORTED:
            raise AbortedError("Transaction has been aborted; replay it from the beginning")
        if self.state != TransactionState.ACTIVE:
            raise PreconditionError(f"Transaction is {self.state.value}")

    def bind_remote_id(self, transaction_id: bytes) -> None:
        if self.transaction_id is None:
            self.transaction_id = transaction_id
            self.logger.debug("Bound server transaction", transaction_id=transaction_id)
        elif self.transaction_id != transaction_id:
            raise PreconditionError("Transaction is already bound to a different server transaction")

    def selector(self) -> TransactionSelector:
        """Selector for the next statement: the bound id, or a request to begin the transaction"""
        if self.transaction_id is not None:
            return TransactionSelector.with_id(self.transaction_id)
        return TransactionSelector.begin(self.isolation, self.exclude_txn_from_change_streams)

    def force_begin(self) -> bytes:
        """
        Start the transaction with an explicit begin-transaction RPC and bind its id.

        Used when the first statement of the transaction failed, which also
        means no transaction id was returned.
        """
        session = self._sessions.acquire()
        transaction_id = self._sessions.client.begin_transaction(
            session, TransactionSelector.begin(self.isolation, self.exclude_txn_from_change_streams)
        )
        self.bind_remote_id(transaction_id)
        self.logger.log_transaction("explicit begin", isolation=self.isolation.value)
        return transaction_id

    def commit(self) -> Optional[datetime]:
        """
        Commit the transaction.

        A transaction that never reached the server (no statements) or that
        is read-only commits locally without an RPC.

        Returns::

            Commit timestamp, or None for a local commit

        Raises::

            AbortedError: If the transaction was or gets aborted; replay it
            PreconditionError: If the transaction is not active
        """
        if self.state == TransactionState.ABORTED:
            raise AbortedError("Transaction has been aborted; replay it from the beginning")
        if self.state != TransactionState.ACTIVE:
            raise PreconditionError("This connection does not have an active transaction")

        if self.read_write and self.transaction_id is not None:
            try:
                self.commit_timestamp = self._sessions.client.commit(self._sessions.acquire(), self.transaction_id)
            except AbortedError:
                self.mark_aborted()
                raise
            except NotFoundError as e:
                if is_session_not_found(e) or is_transaction_not_found(e):
                    self.mark_aborted()
                    self._sessions.reset()
                    raise aborted_error() from e
                raise

        self.state = TransactionState.COMMITTED
        self.logger.log_transaction("commit", commit_timestamp=self.commit_timestamp)
        return self.commit_timestamp

    def rollback(self) -> None:
        """
        Roll back the transaction. Also allowed after an abort, to close the transaction.

        Raises::

            PreconditionError: If the transaction is neither active nor aborted
        """
        if self.state not in (TransactionState.ACTIVE, TransactionState.ABORTED):
            raise PreconditionError("This connection does not have an active transaction")

        was_active = self.state == TransactionState.ACTIVE
        self.state = TransactionState.ROLLED_BACK
        if was_active and self.read_write and self.transaction_id is not None:
            self._sessions.client.rollback(self._sessions.acquire(), self.transaction_id)
        self.logger.log_transaction("rollback")

    def __repr__(self):
        return f"TransactionContext(state={self.state.value}, isolation={self.isolation.value})"


def _to_isolation(isolation: Union[IsolationLevel, str, None]) -> IsolationLevel:
    if isolation is None:
        return IsolationLevel.SERIALIZABLE
    if isinstance(isolation, IsolationLevel):
        return isolation
    try:
        return IsolationLevel(str(isolation).lower())
    except ValueError:
        raise PreconditionError(f"Invalid isolation level: {isolation}")
