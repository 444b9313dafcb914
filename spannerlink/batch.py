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
Statement batching.

A connection buffers either DDL statements or DML statements, never both.
The open batch is one of DdlBatch or DmlBatch (or nothing), so the mutual
exclusion lives in the type of the single ``state`` field.
"""

from enum import Enum
from typing import Any, List, Optional, Union

from .exceptions import PreconditionError
from .statement import Statement


class BatchKind(Enum):
    DDL = "DDL"
    DML = "DML"


class DdlBatch:
    """Pending schema statements, sent as one schema-update job"""

    kind = BatchKind.DDL

    def __init__(self):
        self.statements: List[str] = []


class DmlBatch:
    """Pending data-modifying statements, sent as one atomic batch update"""

    kind = BatchKind.DML

    def __init__(self):
        self.statements: List[Statement] = []


BatchState = Union[None, DdlBatch, DmlBatch]


class BatchBuffer:
    """
    Holds the open batch of a connection, if any.

    run() hands the buffered statements to a runner and always empties the
    buffer, whether the run succeeds or not. The runner provides
    ``run_ddl(statements)`` and ``run_dml(statements)``.
    """

    def __init__(self):
        self.state: BatchState = None

    @property
    def active(self) -> bool:
        return self.state is not None

    @property
    def kind(self) -> Optional[BatchKind]:
        return self.state.kind if self.state is not None else None

    @property
    def pending(self) -> List[Any]:
        return list(self.state.statements) if self.state is not None else []

    def start(self, kind: BatchKind) -> None:
        """
        Open a batch.

        Raises::

            PreconditionError: If a batch of either kind is already open
        """
        if self.state is not None:
            raise PreconditionError("A batch is already active on this connection")
        self.state = DdlBatch() if kind == BatchKind.DDL else DmlBatch()

    def push(self, statement: Union[str, Statement], kind: Optional[BatchKind] = None) -> None:
        """
        Append a statement to the open batch.

        Raises::

            PreconditionError: If no batch is open or the batch is of another kind
        """
        if self.state is None:
            raise PreconditionError("There is no batch active on this connection")
        if kind is not None and kind != self.state.kind:
            raise PreconditionError(f"Cannot add a {kind.value} statement to a {self.state.kind.value} batch")
        if isinstance(self.state, DdlBatch):
            if isinstance(statement, Statement):
                statement = statement.sql
            self.state.statements.append(statement)
        else:
            if not isinstance(statement, Statement):
                statement = Statement(statement)
            self.state.statements.append(statement)

    def run(self, runner) -> Any:
        """
        Send the open batch through the runner and clear it.

        Returns::

            Result of the runner; None for an empty batch (no RPC is made)

        Raises::

            PreconditionError: If no batch is open
        """
        if self.state is None:
            raise PreconditionError("There is no batch active on this connection")
        batch, self.state = self.state, None
        if not batch.statements:
            return None
        if isinstance(batch, DdlBatch):
            return runner.run_ddl(batch.statements)
        return runner.run_dml(batch.statements)

    def abort(self) -> None:
        """Discard the open batch, if any"""
        self.state = None
