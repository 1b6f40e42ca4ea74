"""
Structured logging utility for the dealer inventory crawler.
Provides detailed, structured logs with trace IDs for debugging.
"""
import uuid
import logging
import structlog
from contextvars import ContextVar
from typing import Any, Dict, Optional

from dealer_crawl.config import config

# Context variable for trace ID
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")


def get_trace_id() -> str:
    """Get current trace ID or generate new one."""
    trace_id = trace_id_var.get()
    if not trace_id:
        trace_id = str(uuid.uuid4())[:8]
        trace_id_var.set(trace_id)
    return trace_id


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Set a new trace ID for the current context."""
    new_trace_id = trace_id or str(uuid.uuid4())[:8]
    trace_id_var.set(new_trace_id)
    return new_trace_id


def add_trace_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Processor to add trace ID to all log entries."""
    event_dict["trace_id"] = get_trace_id()
    return event_dict


def configure_logging():
    """Configure structlog with appropriate processors."""
    processors = [
        structlog.contextvars.merge_contextvars,
        add_trace_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if config.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.LOG_LEVEL.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance with the given name."""
    return structlog.get_logger(name)


class LayerLogger:
    """
    Specialized logger for the crawl pipeline components.
    Ensures consistent event names across strategies and layers.
    """

    def __init__(self, layer_name: str):
        self.layer_name = layer_name
        self.logger = get_logger(layer_name)

    def log_decision(
        self,
        decision: str,
        reason: str,
        target: Optional[str] = None,
        **extra
    ):
        """Log a decision made by this layer."""
        self.logger.info(
            "decision_made",
            layer=self.layer_name,
            decision=decision,
            reason=reason,
            target=target,
            **extra
        )

    def log_action(
        self,
        action: str,
        status: str = "started",
        **extra
    ):
        """Log an action being performed."""
        self.logger.info(
            f"action_{status}",
            layer=self.layer_name,
            action=action,
            **extra
        )

    def log_skip(
        self,
        item: str,
        reason: str,
        **extra
    ):
        """Log a discarded block or skipped target (expected, not an error)."""
        self.logger.debug(
            "item_skipped",
            layer=self.layer_name,
            item=item,
            reason=reason,
            **extra
        )

    def log_error(
        self,
        error: str,
        error_type: str = "unknown",
        **extra
    ):
        """Log an error with full context."""
        self.logger.error(
            "error_occurred",
            layer=self.layer_name,
            error=error,
            error_type=error_type,
            **extra
        )

    def log_fetch(
        self,
        url: str,
        status_code: Optional[int],
        result: str,
        **extra
    ):
        """Log a page fetch result."""
        self.logger.info(
            "fetch_result",
            layer=self.layer_name,
            url=url,
            status_code=status_code,
            result=result,
            **extra
        )

    def log_extraction(
        self,
        strategy: str,
        candidates: int,
        skipped: Dict[str, int],
        **extra
    ):
        """Log extraction strategy output."""
        self.logger.info(
            "extraction_completed",
            layer=self.layer_name,
            strategy=strategy,
            candidates=candidates,
            skipped=skipped,
            **extra
        )

    def log_quality_gate(
        self,
        passed: int,
        dropped: int,
        drop_reasons: Dict[str, int],
        **extra
    ):
        """Log quality gate outcome."""
        self.logger.info(
            "quality_gate_applied",
            layer=self.layer_name,
            passed=passed,
            dropped=dropped,
            drop_reasons=drop_reasons,
            **extra
        )

    def log_transition(
        self,
        target: str,
        from_status: str,
        to_status: str,
        **extra
    ):
        """Log a validation lifecycle transition."""
        self.logger.info(
            "validation_transition",
            layer=self.layer_name,
            target=target,
            from_status=from_status,
            to_status=to_status,
            **extra
        )

    def log_alert(
        self,
        target: str,
        alert_type: str,
        **extra
    ):
        """Log a health alert raised for a target."""
        self.logger.warning(
            "health_alert",
            layer=self.layer_name,
            target=target,
            alert_type=alert_type,
            **extra
        )


# Initialize logging on module import
configure_logging()
