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
SpannerLink Python SDK

Client-side session, transaction and statement-execution management for a
distributed, strongly consistent SQL database reached over RPC. Handles
lazy sessions, deferred transaction begin, DDL/DML batching and recovery
from aborted transactions and expired sessions.
"""

from .batch import BatchBuffer, BatchKind, DdlBatch, DmlBatch
from .config import SpannerLinkConfig, database_path, get_config, print_config
from .connection import ConnectionManager
from .engine import ExecutionEngine
from .exceptions import (
    AbortedError,
    BatchUpdateError,
    ConfigurationError,
    ConnectionError,
    FailedPreconditionError,
    InvalidArgumentError,
    MutationLimitExceededError,
    NoDatabaseError,
    NotFoundError,
    PreconditionError,
    QueryError,
    RemoteError,
    SpannerLinkError,
    StatusCode,
    retry_delay_from_aborted,
)
from .logger import SpannerLinkLogger, create_custom_logger, create_default_logger
from .registry import ClientRegistry
from .remote import (
    BatchUpdateResponse,
    IsolationLevel,
    RemoteDatabaseClient,
    ResultSet,
    SchemaJob,
    TransactionSelector,
)
from .session import SessionHandle
from .statement import Statement, StatementType, classify_statement
from .transaction import TransactionContext, TransactionState

__version__ = "1.0.0"
__all__ = [
    "ConnectionManager",
    "ClientRegistry",
    "ExecutionEngine",
    "SessionHandle",
    "TransactionContext",
    "TransactionState",
    "BatchBuffer",
    "BatchKind",
    "DdlBatch",
    "DmlBatch",
    "Statement",
    "StatementType",
    "classify_statement",
    "RemoteDatabaseClient",
    "ResultSet",
    "BatchUpdateResponse",
    "SchemaJob",
    "TransactionSelector",
    "IsolationLevel",
    "SpannerLinkConfig",
    "get_config",
    "database_path",
    "print_config",
    "SpannerLinkLogger",
    "create_default_logger",
    "create_custom_logger",
    "SpannerLinkError",
    "ConnectionError",
    "QueryError",
    "ConfigurationError",
    "NoDatabaseError",
    "PreconditionError",
    "RemoteError",
    "AbortedError",
    "NotFoundError",
    "FailedPreconditionError",
    "InvalidArgumentError",
    "MutationLimitExceededError",
    "BatchUpdateError",
    "StatusCode",
    "retry_delay_from_aborted",
]
