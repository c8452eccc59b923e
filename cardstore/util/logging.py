"""
Structured logging for store, index, search and reconciliation operations.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for deck, card, vector and reconciliation operations."""

    def __init__(self, name: str = "cardstore"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("retrying", "skipped", "degraded"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_deck_operation(self, operation: str, deck_id: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a relational deck operation."""
        log_details = {"deck_id": deck_id}
        if details:
            log_details.update(details)

        self.log_operation(f"deck.{operation}", status, log_details)

    def log_card_batch(self, deck_id: str, count: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a batch card insert."""
        log_details = {"deck_id": deck_id, "count": count}
        if details:
            log_details.update(details)

        self.log_operation("cards.create", status, log_details)

    def log_vector_operation(self, operation: str, target: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector index operation."""
        log_details = {"target": target}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_search(self, query: str, k: int, returned: int, details: Dict[str, Any] = None):
        """Log a search request. The query text is truncated."""
        log_details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "k": k,
            "returned": returned
        }
        if details:
            log_details.update(details)

        self.log_operation("search", "success", log_details)

    def log_reconcile(self, status: str, summary: Dict[str, Any], failures: List[str] = None):
        """Log the outcome of a reconciliation pass."""
        log_details = dict(summary)
        if failures:
            log_details["failures"] = [f[:100] for f in failures]

        self.log_operation("reconcile", status, log_details)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
