"""
Error Handler - Harness fault bookkeeping and retry with backoff

Per-operation errors never reach this module: workers turn them into fail or
info events. What is reported here are faults of the harness itself (broken
barriers, history invariant violations, generator malfunctions, failed heals,
database setup failures), which are surfaced next to the verdict.
"""
import time
import random
import logging
import threading
from typing import Optional, Callable, Any, Dict, List, Tuple
from enum import Enum
from dataclasses import dataclass
from ..models import HarnessFault

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    LOW = "low"  # Informational, run unaffected
    MEDIUM = "medium"  # Degraded, results still meaningful
    HIGH = "high"  # Results unreliable
    FATAL = "fatal"  # Run must abort


class ErrorCategory(Enum):
    """Categories of harness errors"""
    BARRIER = "broken_barrier"
    HISTORY_INVARIANT = "history_invariant"
    GENERATOR = "generator"
    CLIENT = "client"
    NEMESIS = "nemesis"
    DATABASE = "database"
    CHECKER = "checker"
    CONFIGURATION = "configuration"


@dataclass
class ErrorContext:
    """Context information for an error"""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    exception: Optional[Exception] = None
    component: Optional[str] = None
    phase: Optional[str] = None
    node: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_fault(self) -> HarnessFault:
        return HarnessFault(
            category=self.category.value,
            message=self.message,
            phase=self.phase,
            participant=self.component
        )


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True


class ErrorHandler:
    """
    Collects harness errors reported by the controller, workers, barrier and
    nemesis. Errors at HIGH severity and above become harness faults attached
    to the verdict. Safe to call from every worker thread.
    """

    def __init__(self):
        self.error_history: List[ErrorContext] = []
        self._lock = threading.Lock()

    def handle_error(self, error_context: ErrorContext) -> None:
        """Log and record an error"""
        self._log_error(error_context)

        with self._lock:
            self.error_history.append(error_context)

        if error_context.severity == ErrorSeverity.FATAL:
            logger.error(f"Fatal harness error: {error_context.message}")

    def record_fault(self, fault: HarnessFault, severity: ErrorSeverity = ErrorSeverity.HIGH) -> None:
        """Adopt a fault raised elsewhere (the barrier reports its own)"""
        try:
            category = ErrorCategory(fault.category)
        except ValueError:
            category = ErrorCategory.CONFIGURATION
        self.handle_error(ErrorContext(
            category=category,
            severity=severity,
            message=fault.message,
            component=fault.participant,
            phase=fault.phase
        ))

    def retry_with_backoff(
        self,
        operation: Callable,
        config: RetryConfig,
        error_category: ErrorCategory,
        operation_name: str = "operation",
        **kwargs
    ) -> Tuple[bool, Any]:
        """Execute an operation with retry logic and exponential backoff"""
        last_exception = None

        for attempt in range(config.max_attempts):
            try:
                logger.info(f"Executing {operation_name} (attempt {attempt + 1}/{config.max_attempts})")
                result = operation(**kwargs)
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
                return True, result

            except Exception as e:
                last_exception = e
                logger.warning(f"{operation_name} failed on attempt {attempt + 1}: {e}")
                with self._lock:
                    self.error_history.append(ErrorContext(
                        category=error_category,
                        severity=ErrorSeverity.MEDIUM,
                        message=f"{operation_name} failed: {e}",
                        exception=e,
                        metadata={'attempt': attempt + 1, 'max_attempts': config.max_attempts}
                    ))

                if attempt < config.max_attempts - 1:
                    backoff_delay = min(
                        config.initial_delay * (config.exponential_base ** attempt),
                        config.max_delay
                    )
                    if config.jitter:
                        backoff_delay *= (0.5 + random.random())
                    logger.info(f"Retrying in {backoff_delay:.2f} seconds...")
                    time.sleep(backoff_delay)

        logger.error(f"{operation_name} failed after {config.max_attempts} attempts")
        self.handle_error(ErrorContext(
            category=error_category,
            severity=ErrorSeverity.HIGH,
            message=f"{operation_name} failed after {config.max_attempts} attempts: {last_exception}",
            exception=last_exception,
            metadata={'attempts': config.max_attempts}
        ))
        return False, None

    def _log_error(self, error_context: ErrorContext):
        """Log error with appropriate level based on severity"""
        log_message = f"[{error_context.category.value}] {error_context.message}"

        if error_context.component:
            log_message = f"[{error_context.component}] {log_message}"
        if error_context.phase:
            log_message += f" (phase: {error_context.phase})"
        if error_context.node:
            log_message += f" (node: {error_context.node})"

        if error_context.severity == ErrorSeverity.FATAL:
            logger.critical(log_message)
        elif error_context.severity == ErrorSeverity.HIGH:
            logger.error(log_message)
        elif error_context.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def harness_faults(self) -> List[HarnessFault]:
        """Errors severe enough to make the run's results unreliable"""
        with self._lock:
            return [
                e.to_fault() for e in self.error_history
                if e.severity in (ErrorSeverity.HIGH, ErrorSeverity.FATAL)
            ]

    def warnings(self) -> List[HarnessFault]:
        with self._lock:
            return [e.to_fault() for e in self.error_history if e.severity == ErrorSeverity.MEDIUM]

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of all errors encountered"""
        with self._lock:
            history = list(self.error_history)

        errors_by_category: Dict[str, int] = {}
        errors_by_severity: Dict[str, int] = {}
        for error in history:
            category = error.category.value
            errors_by_category[category] = errors_by_category.get(category, 0) + 1
            severity = error.severity.value
            errors_by_severity[severity] = errors_by_severity.get(severity, 0) + 1

        return {
            'total_errors': len(history),
            'by_category': errors_by_category,
            'by_severity': errors_by_severity,
            'recent_errors': [
                {
                    'category': e.category.value,
                    'severity': e.severity.value,
                    'message': e.message
                }
                for e in history[-10:]  # Last 10 errors
            ]
        }

