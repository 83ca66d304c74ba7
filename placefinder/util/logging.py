"""
Structured operation logging for the indexing and search layers.
Every write, search and encoder load goes through the shared `logger` instance.
"""

import logging
from typing import Any, Dict, List

class StructuredLogger:
    """Structured logger for index, search and encoder operations."""

    def __init__(self, name: str = "placefinder"):
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

        if status == "failed":
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_index_operation(self, operation: str, entity_id: Any, details: Dict[str, Any] = None, status: str = "success"):
        """Log a create/update/delete against the record store."""
        log_details = {"entity_id": entity_id}
        if details:
            log_details.update(sanitize_payload(details))

        self.log_operation(f"index.{operation}", status, log_details)

    def log_search(self, query: str, threshold: float, limit: int, result_count: int,
                   duration_ms: float, status: str = "success"):
        """Log a similarity search."""
        log_details = {
            "query": sanitize_payload(query),
            "threshold": threshold,
            "limit": limit,
            "result_count": result_count,
            "duration_ms": round(duration_ms, 2),
        }
        self.log_operation("search.query", status, log_details)

    def log_encoder_load(self, model_name: str, start_time: float, end_time: float,
                         status: str = "success", details: Dict[str, Any] = None):
        """Log encoder model load timing."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"model": model_name, "duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Encoder '{model_name}' loaded in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Encoder '{model_name}' failed to load after {duration_ms}ms"

        self.log_operation("encoder.load", status, log_details)

    def log_rebuild(self, scanned: int, reindexed: int, failed: List[Any] = None):
        """Log an index rebuild pass."""
        log_details = {"scanned": scanned, "reindexed": reindexed}
        if failed:
            log_details["failed_ids"] = failed[:20]
        self.log_operation("index.rebuild", "failed" if failed else "success", log_details)

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


def sanitize_payload(payload: Any, max_length: int = 100) -> Any:
    """Truncate free text before it reaches the log."""
    if isinstance(payload, dict):
        return {k: sanitize_payload(v, max_length) for k, v in payload.items()}
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, max_length) for item in payload]
    else:
        return payload
