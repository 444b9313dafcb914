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
SpannerLink SDK Exceptions

Local errors (misuse, configuration) derive directly from SpannerLinkError.
Errors reported by the remote database derive from RemoteError and carry the
status code plus the RPC error metadata used to classify them.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

SESSION_RESOURCE_TYPE = "type.googleapis.com/google.spanner.v1.Session"
TRANSACTION_RESOURCE_TYPE = "type.googleapis.com/google.spanner.v1.Transaction"

# Metadata keys attached to remote errors
RESOURCE_TYPE_KEY = "resource_type"
RETRY_DELAY_KEY = "retry_delay"

MUTATION_LIMIT_MESSAGE = "The transaction contains too many mutations"


class StatusCode(Enum):
    """RPC status codes the SDK distinguishes"""

    UNKNOWN = "UNKNOWN"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    FAILED_PRECONDITION = "FAILED_PRECONDITION"
    ABORTED = "ABORTED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL = "INTERNAL"


class SpannerLinkError(Exception):
    """Base exception for all SpannerLink SDK errors"""


class ConnectionError(SpannerLinkError):
    """Raised when a session against the remote database cannot be established"""


class QueryError(SpannerLinkError):
    """Raised when a statement cannot be prepared for execution"""


class ConfigurationError(SpannerLinkError):
    """Raised when configuration is invalid"""


class NoDatabaseError(SpannerLinkError):
    """Raised when the configured database does not exist"""


class PreconditionError(SpannerLinkError):
    """Raised on connection misuse: nested transactions, batch on batch, commit without a transaction"""


class RemoteError(SpannerLinkError):
    """
    Error reported by the remote database.

    Attributes::

        code (StatusCode): RPC status code
        message (str): Error message from the server
        metadata (Dict[str, Any]): RPC error metadata (resource info, retry info)
    """

    default_code = StatusCode.UNKNOWN

    def __init__(self, message: str = "", code: Optional[StatusCode] = None, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.metadata = metadata or {}

    @classmethod
    def from_status(cls, code: StatusCode, message: str = "", metadata: Optional[Dict[str, Any]] = None) -> "RemoteError":
        """
        Build the classified error for a status code.

        Args::

            code: RPC status code
            message: Server error message
            metadata: RPC error metadata

        Returns::

            Instance of the most specific RemoteError subclass
        """
        if code == StatusCode.INVALID_ARGUMENT and MUTATION_LIMIT_MESSAGE in (message or ""):
            return MutationLimitExceededError(message, code, metadata)
        error_class = _ERRORS_BY_CODE.get(code, RemoteError)
        return error_class(message, code, metadata)

    def __repr__(self):
        return f"{type(self).__name__}(code={self.code.value}, message='{self.message}')"


class AbortedError(RemoteError):
    """Raised when the transaction was aborted by optimistic concurrency control; replay the whole transaction"""

    default_code = StatusCode.ABORTED


class NotFoundError(RemoteError):
    """Raised when a remote resource (session, transaction, table, ...) does not exist"""

    default_code = StatusCode.NOT_FOUND


class FailedPreconditionError(RemoteError):
    """Raised when the server rejects a request because the system is not in the required state"""

    default_code = StatusCode.FAILED_PRECONDITION


class InvalidArgumentError(RemoteError):
    """Raised when the server rejects a request as malformed"""

    default_code = StatusCode.INVALID_ARGUMENT


class MutationLimitExceededError(InvalidArgumentError):
    """Raised when a transaction exceeds the server's mutation limit. Never retryable."""


class BatchUpdateError(RemoteError):
    """
    Raised when a batch DML request fails part way.

    Attributes::

        cause (Optional[RemoteError]): Error of the statement that failed
        row_counts (List[int]): Row counts of the statements that succeeded
        transaction_id (Optional[bytes]): Transaction returned with the partial results, if any
    """

    def __init__(
        self,
        message: str = "",
        cause: Optional[RemoteError] = None,
        row_counts: Optional[List[int]] = None,
        transaction_id: Optional[bytes] = None,
    ):
        code = cause.code if cause is not None else StatusCode.UNKNOWN
        metadata = cause.metadata if cause is not None else None
        super().__init__(message, code, metadata)
        self.cause = cause
        self.__cause__ = cause
        self.row_counts = row_counts or []
        self.transaction_id = transaction_id


_ERRORS_BY_CODE = {
    StatusCode.ABORTED: AbortedError,
    StatusCode.NOT_FOUND: NotFoundError,
    StatusCode.FAILED_PRECONDITION: FailedPreconditionError,
    StatusCode.INVALID_ARGUMENT: InvalidArgumentError,
}


def _resource_type(error: Exception) -> Optional[str]:
    metadata = getattr(error, "metadata", None)
    if not metadata:
        return None
    return metadata.get(RESOURCE_TYPE_KEY)


def is_session_not_found(error: Exception) -> bool:
    """Check if a NOT_FOUND error refers to the session"""
    return isinstance(error, NotFoundError) and _resource_type(error) == SESSION_RESOURCE_TYPE


def is_transaction_not_found(error: Exception) -> bool:
    """Check if a NOT_FOUND error refers to the transaction"""
    return isinstance(error, NotFoundError) and _resource_type(error) == TRANSACTION_RESOURCE_TYPE


def is_mutation_limit_error(error: Exception) -> bool:
    """Check if an error reports that the transaction has too many mutations"""
    if isinstance(error, MutationLimitExceededError):
        return True
    return isinstance(error, InvalidArgumentError) and MUTATION_LIMIT_MESSAGE in error.message


def retry_delay_from_aborted(error: Optional[BaseException]) -> Optional[float]:
    """
    Retrieve the server-suggested retry delay from an aborted error.

    The delay is carried in the error metadata as ``(seconds, nanos)``. When
    the error itself has no retry info the cause chain is inspected.

    Args::

        error: The aborted error (or an error wrapping one)

    Returns::

        Delay in seconds, or None when no hint is available
    """
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        metadata = getattr(error, "metadata", None) or {}
        delay = metadata.get(RETRY_DELAY_KEY)
        if delay is not None:
            seconds, nanos = delay
            if nanos == 0:
                return float(seconds)
            return seconds + nanos / 1_000_000_000.0
        error = error.__cause__
    return None


def aborted_error(message: str = "Transaction aborted") -> AbortedError:
    """
    Build the ABORTED error raised when a transaction must be replayed from the start.

    The error carries a retry delay of one nanosecond so outer retry loops
    replay immediately.
    """
    return AbortedError(message, StatusCode.ABORTED, {RETRY_DELAY_KEY: (0, 1)})
