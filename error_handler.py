"""
Best-Effort Error Handler
=========================
Error taxonomy and failure bookkeeping for the gateway.

Nothing that talks to a node or to the backend is allowed to take the
dashboard down. Failures are classified, counted and logged, then swallowed:

- hardware_unreachable: a node did not answer a command
- backend_sync_failed: the backend rejected or never saw a status update
- malformed_telemetry: a sensor read failed or returned garbage
- unresolved_command: a voice command matched no output
"""
import asyncio
import logging
from typing import Callable, Any, Optional, Dict

import httpx

logger = logging.getLogger("error_handler")


class GatewayError(Exception):
    """Base class for gateway errors."""
    pass


class NodeUnreachable(GatewayError):
    """Raised when a node cannot be reached."""
    pass


class BackendError(GatewayError):
    """Raised when the backend request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TelemetryError(GatewayError):
    """Raised when a sensor payload cannot be used."""
    pass


class InvalidCommand(GatewayError, ValueError):
    """Raised when a channel or value is out of range."""
    pass


class DeviceNotFound(GatewayError, LookupError):
    """Raised when a device id is unknown or not mounted."""
    pass


class ErrorCategory:
    """Failure categories"""

    HARDWARE_UNREACHABLE = "hardware_unreachable"
    BACKEND_SYNC_FAILED = "backend_sync_failed"
    MALFORMED_TELEMETRY = "malformed_telemetry"
    UNRESOLVED_COMMAND = "unresolved_command"
    UNKNOWN = "unknown"


class ErrorHandler:
    """
    Centralized bookkeeping for swallowed failures.

    Features:
    - Error classification into the gateway taxonomy
    - Statistics tracking per category and exception type
    - Best-effort execution of coroutines (log, count, swallow)
    """

    def __init__(self):
        self.stats = {
            'total_attempts': 0,
            'total_successes': 0,
            'total_failures': 0,
            'errors_by_type': {},
            'errors_by_category': {},
        }

    def classify(self, error: Exception, default: Optional[str] = None) -> str:
        """
        Map an exception onto a failure category.

        Args:
            error: The exception
            default: Category to use when the exception type is not specific

        Returns:
            One of the ErrorCategory values
        """
        if isinstance(error, TelemetryError):
            return ErrorCategory.MALFORMED_TELEMETRY
        if isinstance(error, BackendError):
            return ErrorCategory.BACKEND_SYNC_FAILED
        if isinstance(error, NodeUnreachable):
            return ErrorCategory.HARDWARE_UNREACHABLE

        if default:
            return default

        # Bare transport errors most likely came from a node
        if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
            return ErrorCategory.HARDWARE_UNREACHABLE

        return ErrorCategory.UNKNOWN

    def record_error(self, error: Exception, category: Optional[str] = None) -> str:
        """Record error in statistics."""
        error_type = type(error).__name__
        self.stats['errors_by_type'][error_type] = \
            self.stats['errors_by_type'].get(error_type, 0) + 1

        category = self.classify(error, category)
        self.stats['errors_by_category'][category] = \
            self.stats['errors_by_category'].get(category, 0) + 1
        return category

    def record_notice(self, category: str):
        """Record a non-exception failure (e.g. an unresolved voice command)."""
        self.stats['errors_by_category'][category] = \
            self.stats['errors_by_category'].get(category, 0) + 1

    async def run_best_effort(
            self,
            operation: Callable,
            *args,
            category: Optional[str] = None,
            context: Optional[str] = None,
            **kwargs
    ) -> Any:
        """
        Execute operation once, swallowing any failure.

        Args:
            operation: The async function to execute
            *args: Positional arguments for operation
            category: Failure category used when the error is not specific
            context: Optional context string for logging
            **kwargs: Keyword arguments for operation

        Returns:
            Result from operation, or None if it failed
        """
        self.stats['total_attempts'] += 1

        try:
            result = await operation(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            category = self.record_error(e, category)
            self.stats['total_failures'] += 1
            logger.debug(f"Swallowed {category}: {e}" +
                         (f" ({context})" if context else ""))
            return None

        self.stats['total_successes'] += 1
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get error handling statistics."""
        total = self.stats['total_attempts']
        if total > 0:
            success_rate = (self.stats['total_successes'] / total) * 100
        else:
            success_rate = 0

        return {
            **self.stats,
            'errors_by_type': dict(self.stats['errors_by_type']),
            'errors_by_category': dict(self.stats['errors_by_category']),
            'success_rate': success_rate,
        }


# Global error handler instance
_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the shared error handler."""
    return _error_handler

