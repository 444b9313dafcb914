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
Logging for the SpannerLink SDK.

SpannerLinkLogger wraps a standard ``logging.Logger`` (the SDK's own
"spannerlink" logger, or one supplied by the application) and knows how to
render the events a connection produces: statements, session lifecycle,
transactions, batches and internal retries.

Statement text is rendered according to ``sql_log_mode``:

- ``off``: statements are not logged
- ``auto``: short statements verbatim, long ones as a one-line summary
- ``simple``: always the summary, e.g. ``UPDATE SINGERS``
- ``full``: always verbatim

Failed and slow statements are always logged verbatim.
"""

import logging
import re
import sys
from typing import Optional

SQL_LOG_MODES = ("off", "auto", "simple", "full")

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"

_IDENT = r'[`"]?(\w+)[`"]?'

# First match wins; statements are matched upper-cased
_SUMMARY_RULES = [
    (re.compile(r"^(?:@\{[^}]*\}\s*)?SELECT\b.*?\bFROM\s+" + _IDENT, re.S), "SELECT FROM {}"),
    (re.compile(r"^INSERT\s+(?:OR\s+(?:UPDATE|IGNORE)\s+)?(?:INTO\s+)?" + _IDENT), "INSERT INTO {}"),
    (re.compile(r"^UPDATE\s+" + _IDENT), "UPDATE {}"),
    (re.compile(r"^DELETE\s+(?:FROM\s+)?" + _IDENT), "DELETE FROM {}"),
    (re.compile(r"^CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT), "CREATE TABLE {}"),
    (re.compile(r"^CREATE\s+(?:UNIQUE\s+)?(?:NULL_FILTERED\s+)?INDEX\b.*?\bON\s+" + _IDENT, re.S), "CREATE INDEX ON {}"),
    (re.compile(r"^ALTER\s+TABLE\s+" + _IDENT), "ALTER TABLE {}"),
    (re.compile(r"^DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?" + _IDENT), "DROP TABLE {}"),
    (re.compile(r"^DROP\s+INDEX\s+(?:IF\s+EXISTS\s+)?" + _IDENT), "DROP INDEX {}"),
]

_SUMMARY_FALLBACK_LENGTH = 50


def summarize_sql(sql: str) -> str:
    """Reduce a statement to its verb and target table, e.g. ``DELETE FROM ALBUMS``"""
    text = sql.strip()
    upper = text.upper()
    for pattern, template in _SUMMARY_RULES:
        found = pattern.search(upper)
        if found:
            return template.format(found.group(1))
    if len(text) > _SUMMARY_FALLBACK_LENGTH:
        return text[:_SUMMARY_FALLBACK_LENGTH] + "..."
    return text


def _check_sql_log_mode(mode: str) -> str:
    if mode not in SQL_LOG_MODES:
        raise ValueError(f"Invalid sql_log_mode '{mode}'. Must be one of {list(SQL_LOG_MODES)}")
    return mode


def _sdk_logger(level: int, format_string: Optional[str]) -> logging.Logger:
    logger = logging.getLogger("spannerlink")
    if logger.handlers:
        # Already configured by an earlier connection
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    logger.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def _with_context(message: str, context: dict) -> str:
    if not context:
        return message
    return " | ".join([message] + [f"{key}={value}" for key, value in context.items()])


class SpannerLinkLogger:
    """
    Structured logger used by sessions, the execution engine and connections.

    Records are attributed to the SDK frame that asked for them, so
    ``%(filename)s:%(lineno)d`` points at the connection code rather than
    at this module.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
        format_string: Optional[str] = None,
        sql_log_mode: str = "auto",
        slow_query_threshold: float = 1.0,
        max_sql_display_length: int = 500,
    ):
        """
        Args::

            logger: Application logger to write to. When omitted the SDK's
                "spannerlink" logger is configured with a stdout handler
            level: Level of the SDK logger, ignored for an application logger
            format_string: Formatter pattern of the SDK logger
            sql_log_mode: One of 'off', 'auto', 'simple', 'full'
            slow_query_threshold: Seconds after which a statement is marked [SLOW]
            max_sql_display_length: Longest statement 'auto' mode logs verbatim
        """
        self._is_custom = logger is not None
        self.logger = logger if logger is not None else _sdk_logger(level, format_string)

        self.sql_log_mode = "auto"
        self.slow_query_threshold = 1.0
        self.max_sql_display_length = 500
        self.update_config(
            sql_log_mode=sql_log_mode,
            slow_query_threshold=slow_query_threshold,
            max_sql_display_length=max_sql_display_length,
        )

    def update_config(
        self,
        sql_log_mode: Optional[str] = None,
        slow_query_threshold: Optional[float] = None,
        max_sql_display_length: Optional[int] = None,
    ):
        """
        Change statement rendering on a live logger. Arguments left as None keep
        their current value.

        Example::

            conn.logger.update_config(sql_log_mode="full", slow_query_threshold=0.2)
        """
        if sql_log_mode is not None:
            self.sql_log_mode = _check_sql_log_mode(sql_log_mode)
        if slow_query_threshold is not None:
            if slow_query_threshold < 0:
                raise ValueError("slow_query_threshold must be non-negative")
            self.slow_query_threshold = slow_query_threshold
        if max_sql_display_length is not None:
            if max_sql_display_length < 1:
                raise ValueError("max_sql_display_length must be positive")
            self.max_sql_display_length = max_sql_display_length

    def _emit(self, level: int, message: str, exc_info=None, depth: int = 2):
        if not self.logger.isEnabledFor(level):
            return
        caller = sys._getframe(depth)
        self.logger.handle(
            self.logger.makeRecord(
                self.logger.name, level, caller.f_code.co_filename, caller.f_lineno, message, (), exc_info
            )
        )

    def _event(self, subject: str, action: str, success: bool, failure_level: int, context: dict):
        # Called from the public log_* methods, hence one extra frame
        if success:
            self._emit(logging.INFO, _with_context(f"✓ {subject}: {action}", context), depth=3)
        else:
            self._emit(failure_level, _with_context(f"✗ {subject} failed: {action}", context), depth=3)

    def debug(self, message: str, **kwargs):
        self._emit(logging.DEBUG, _with_context(message, kwargs))

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, _with_context(message, kwargs))

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, _with_context(message, kwargs))

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, _with_context(message, kwargs))

    def _render_sql(self, sql: str, mode: str, verbatim: bool) -> str:
        text = sql.strip()
        if verbatim or mode == "full":
            return text
        if mode == "simple":
            return summarize_sql(text)
        if len(text) > self.max_sql_display_length:
            return f"{summarize_sql(text)} [SQL length: {len(text)} chars]"
        return text

    def log_query(
        self,
        query: str,
        execution_time: Optional[float] = None,
        affected_rows: Optional[int] = None,
        success: bool = True,
        override_sql_log_mode: Optional[str] = None,
    ):
        """
        Log one statement or batch round trip.

        Args::

            query: Statement text, or a description of a batch
            execution_time: Round trip duration in seconds
            affected_rows: Row count reported by the server
            success: False when the round trip raised
            override_sql_log_mode: sql_log_mode to use for this call only
        """
        mode = override_sql_log_mode or self.sql_log_mode
        if mode == "off":
            return

        slow = execution_time is not None and execution_time >= self.slow_query_threshold
        text = self._render_sql(query, mode, verbatim=slow or not success)

        parts = ["✓" if success else "✗"]
        if execution_time is not None:
            parts.append(f"{execution_time:.3f}s")
        if affected_rows is not None:
            parts.append(f"{affected_rows} rows")
        if not success:
            parts.append("[ERROR] " + text)
        elif slow:
            parts.append("[SLOW] " + text)
        else:
            parts.append(text)

        self._emit(logging.INFO if success else logging.ERROR, " | ".join(parts))

    def log_error(self, error: Exception, context: Optional[str] = None, include_traceback: bool = False):
        """Log an exception with its class, message and, for remote errors, the status code"""
        details = {"error_type": type(error).__name__, "error_message": str(error)}
        code = getattr(error, "code", None)
        if hasattr(code, "value"):
            details["code"] = code.value
        if context:
            details["context"] = context
        self._emit(
            logging.ERROR,
            _with_context(f"Error occurred: {details['error_type']}", details),
            sys.exc_info() if include_traceback else None,
        )

    def log_session(self, action: str, session_name: Optional[str] = None, success: bool = True):
        self._event("Session", action, success, logging.WARNING, {"session": session_name} if session_name else {})

    def log_transaction(self, action: str, success: bool = True, **kwargs):
        self._event("Transaction", action, success, logging.INFO, kwargs)

    def log_batch(self, kind: str, action: str, statement_count: int, success: bool = True):
        self._event(f"{kind} batch", action, success, logging.ERROR, {"statements": statement_count})

    def log_retry(self, reason: str, **kwargs):
        """Log that a statement, batch or transaction is about to be sent again"""
        self._emit(logging.WARNING, _with_context(f"↻ Retrying: {reason}", kwargs))

    def log_performance(self, operation: str, duration: float, **kwargs):
        kwargs["duration"] = f"{duration:.3f}s"
        self._emit(logging.INFO, _with_context(f"Performance: {operation}", kwargs))

    def set_level(self, level: int):
        """Set the level of the logger and of every handler attached to it"""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def add_handler(self, handler: logging.Handler):
        self.logger.addHandler(handler)

    def remove_handler(self, handler: logging.Handler):
        self.logger.removeHandler(handler)

    def is_custom(self) -> bool:
        """True when writing to an application-supplied logger"""
        return self._is_custom


def create_default_logger(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    sql_log_mode: str = "auto",
    slow_query_threshold: float = 1.0,
    max_sql_display_length: int = 500,
) -> SpannerLinkLogger:
    """Build a SpannerLinkLogger on the SDK's own "spannerlink" logger"""
    return SpannerLinkLogger(
        level=level,
        format_string=format_string,
        sql_log_mode=sql_log_mode,
        slow_query_threshold=slow_query_threshold,
        max_sql_display_length=max_sql_display_length,
    )


def create_custom_logger(
    logger: logging.Logger,
    sql_log_mode: str = "auto",
    slow_query_threshold: float = 1.0,
    max_sql_display_length: int = 500,
) -> SpannerLinkLogger:
    """
    Build a SpannerLinkLogger that writes to an application logger.

    The application keeps control of handlers, levels and formatting.
    """
    return SpannerLinkLogger(
        logger=logger,
        sql_log_mode=sql_log_mode,
        slow_query_threshold=slow_query_threshold,
        max_sql_display_length=max_sql_display_length,
    )
