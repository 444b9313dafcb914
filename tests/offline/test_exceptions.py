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
Offline tests for error classification helpers.
"""

import pytest

from spannerlink.exceptions import (
    MUTATION_LIMIT_MESSAGE,
    RESOURCE_TYPE_KEY,
    RETRY_DELAY_KEY,
    SESSION_RESOURCE_TYPE,
    TRANSACTION_RESOURCE_TYPE,
    AbortedError,
    BatchUpdateError,
    FailedPreconditionError,
    InvalidArgumentError,
    MutationLimitExceededError,
    NotFoundError,
    RemoteError,
    SpannerLinkError,
    StatusCode,
    aborted_error,
    is_mutation_limit_error,
    is_session_not_found,
    is_transaction_not_found,
    retry_delay_from_aborted,
)


class TestFromStatus:
    """Test building classified errors from status codes"""

    @pytest.mark.parametrize(
        "code, expected",
        [
            (StatusCode.ABORTED, AbortedError),
            (StatusCode.NOT_FOUND, NotFoundError),
            (StatusCode.FAILED_PRECONDITION, FailedPreconditionError),
            (StatusCode.INVALID_ARGUMENT, InvalidArgumentError),
            (StatusCode.UNAVAILABLE, RemoteError),
        ],
    )
    def test_code_maps_to_class(self, code, expected):
        error = RemoteError.from_status(code, "boom")
        assert type(error) is expected
        assert error.code == code
        assert error.message == "boom"

    def test_mutation_limit_is_distinguished(self):
        error = RemoteError.from_status(StatusCode.INVALID_ARGUMENT, f"{MUTATION_LIMIT_MESSAGE}: 80001")
        assert isinstance(error, MutationLimitExceededError)
        assert isinstance(error, InvalidArgumentError)

    def test_all_errors_share_root(self):
        assert issubclass(RemoteError, SpannerLinkError)
        assert issubclass(AbortedError, RemoteError)
        assert issubclass(BatchUpdateError, RemoteError)


class TestClassification:
    """Test session/transaction not-found and mutation limit detection"""

    def test_session_not_found(self):
        error = NotFoundError("Session not found", metadata={RESOURCE_TYPE_KEY: SESSION_RESOURCE_TYPE})
        assert is_session_not_found(error)
        assert not is_transaction_not_found(error)

    def test_transaction_not_found(self):
        error = NotFoundError("Transaction not found", metadata={RESOURCE_TYPE_KEY: TRANSACTION_RESOURCE_TYPE})
        assert is_transaction_not_found(error)
        assert not is_session_not_found(error)

    def test_table_not_found_is_neither(self):
        error = NotFoundError("Table not found: users")
        assert not is_session_not_found(error)
        assert not is_transaction_not_found(error)

    def test_resource_type_on_other_code_is_ignored(self):
        error = AbortedError("aborted", metadata={RESOURCE_TYPE_KEY: SESSION_RESOURCE_TYPE})
        assert not is_session_not_found(error)

    def test_mutation_limit_by_message(self):
        error = InvalidArgumentError(MUTATION_LIMIT_MESSAGE)
        assert is_mutation_limit_error(error)
        assert not is_mutation_limit_error(InvalidArgumentError("bad column"))
        assert not is_mutation_limit_error(RemoteError(MUTATION_LIMIT_MESSAGE))


class TestRetryDelay:
    """Test retry delay extraction"""

    def test_seconds_and_nanos(self):
        error = AbortedError("aborted", metadata={RETRY_DELAY_KEY: (2, 500_000_000)})
        assert retry_delay_from_aborted(error) == pytest.approx(2.5)

    def test_whole_seconds(self):
        error = AbortedError("aborted", metadata={RETRY_DELAY_KEY: (3, 0)})
        assert retry_delay_from_aborted(error) == 3.0

    def test_missing_delay(self):
        assert retry_delay_from_aborted(AbortedError("aborted")) is None
        assert retry_delay_from_aborted(None) is None

    def test_walks_cause_chain(self):
        inner = AbortedError("aborted", metadata={RETRY_DELAY_KEY: (1, 0)})
        outer = BatchUpdateError("batch failed", cause=inner)
        assert outer.code == StatusCode.ABORTED
        assert retry_delay_from_aborted(outer) == 1.0

    def test_synthesized_aborted_error(self):
        error = aborted_error()
        assert isinstance(error, AbortedError)
        assert error.code == StatusCode.ABORTED
        assert retry_delay_from_aborted(error) == pytest.approx(1e-9)


class TestBatchUpdateError:
    """Test batch update error details"""

    def test_carries_cause_details(self):
        cause = FailedPreconditionError("constraint violated", metadata={"k": "v"})
        error = BatchUpdateError("batch failed", cause=cause, row_counts=[1, 2], transaction_id=b"tx")
        assert error.cause is cause
        assert error.__cause__ is cause
        assert error.code == StatusCode.FAILED_PRECONDITION
        assert error.metadata == {"k": "v"}
        assert error.row_counts == [1, 2]
        assert error.transaction_id == b"tx"

    def test_without_cause(self):
        error = BatchUpdateError("batch failed")
        assert error.code == StatusCode.UNKNOWN
        assert error.row_counts == []
