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
Offline tests for BatchBuffer.
"""

from unittest.mock import Mock

import pytest

from spannerlink.batch import BatchBuffer, BatchKind, DdlBatch, DmlBatch
from spannerlink.exceptions import PreconditionError, RemoteError
from spannerlink.statement import Statement


class TestBatchBuffer:
    """Test batch state transitions"""

    def setup_method(self):
        self.buffer = BatchBuffer()
        self.runner = Mock()

    def test_starts_empty(self):
        assert not self.buffer.active
        assert self.buffer.kind is None
        assert self.buffer.pending == []

    @pytest.mark.parametrize(
        "first, second",
        [(BatchKind.DDL, BatchKind.DML), (BatchKind.DML, BatchKind.DDL), (BatchKind.DDL, BatchKind.DDL)],
    )
    def test_only_one_batch_at_a_time(self, first, second):
        self.buffer.start(first)
        with pytest.raises(PreconditionError):
            self.buffer.start(second)
        assert self.buffer.kind == first

    def test_state_is_tagged(self):
        self.buffer.start(BatchKind.DDL)
        assert isinstance(self.buffer.state, DdlBatch)
        self.buffer.abort()
        self.buffer.start(BatchKind.DML)
        assert isinstance(self.buffer.state, DmlBatch)

    def test_push_without_batch(self):
        with pytest.raises(PreconditionError):
            self.buffer.push("CREATE TABLE a (id INT64) PRIMARY KEY (id)")

    def test_push_kind_mismatch(self):
        self.buffer.start(BatchKind.DDL)
        with pytest.raises(PreconditionError):
            self.buffer.push(Statement("UPDATE a SET v = 1"), BatchKind.DML)

    def test_push_keeps_order(self):
        self.buffer.start(BatchKind.DML)
        self.buffer.push("UPDATE a SET v = 1 WHERE id = 1")
        self.buffer.push(Statement("UPDATE a SET v = 2 WHERE id = @id", {"id": 2}))
        assert [statement.sql for statement in self.buffer.pending] == [
            "UPDATE a SET v = 1 WHERE id = 1",
            "UPDATE a SET v = 2 WHERE id = @id",
        ]

    def test_run_ddl(self):
        self.runner.run_ddl.return_value = True
        self.buffer.start(BatchKind.DDL)
        self.buffer.push("CREATE TABLE a (id INT64) PRIMARY KEY (id)")
        self.buffer.push(Statement("CREATE INDEX a_by_id ON a (id)"))

        assert self.buffer.run(self.runner) is True

        self.runner.run_ddl.assert_called_once_with(
            ["CREATE TABLE a (id INT64) PRIMARY KEY (id)", "CREATE INDEX a_by_id ON a (id)"]
        )
        assert not self.buffer.active

    def test_run_dml(self):
        self.runner.run_dml.return_value = [1, 1]
        self.buffer.start(BatchKind.DML)
        self.buffer.push("UPDATE a SET v = 1 WHERE id = 1")
        self.buffer.push("UPDATE a SET v = 2 WHERE id = 2")

        assert self.buffer.run(self.runner) == [1, 1]
        statements = self.runner.run_dml.call_args[0][0]
        assert [statement.sql for statement in statements] == [
            "UPDATE a SET v = 1 WHERE id = 1",
            "UPDATE a SET v = 2 WHERE id = 2",
        ]

    def test_run_empty_batch(self):
        self.buffer.start(BatchKind.DML)
        assert self.buffer.run(self.runner) is None
        self.runner.run_dml.assert_not_called()
        assert not self.buffer.active

    def test_run_without_batch(self):
        with pytest.raises(PreconditionError):
            self.buffer.run(self.runner)

    def test_failed_run_clears_buffer(self):
        self.runner.run_ddl.side_effect = RemoteError("job failed")
        self.buffer.start(BatchKind.DDL)
        self.buffer.push("CREATE TABLE a (id INT64) PRIMARY KEY (id)")
        with pytest.raises(RemoteError):
            self.buffer.run(self.runner)
        assert not self.buffer.active

    def test_abort_is_always_safe(self):
        self.buffer.abort()
        self.buffer.start(BatchKind.DDL)
        self.buffer.push("DROP TABLE a")
        self.buffer.abort()
        assert not self.buffer.active
        self.buffer.start(BatchKind.DML)
