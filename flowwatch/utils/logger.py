"""
Structured logging for the flowwatch monitor.
Supports JSON logging so alert events can be shipped to a log collector.
"""

import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to emit one JSON object per line
        logger_name: Optional specific logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or "flowwatch")
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger with the given name."""
    return logging.getLogger(f"flowwatch.{name}")


class AlertLogger:
    """Specialized logger for signal lifecycle events."""

    def __init__(self):
        self.logger = get_logger("alerts")

    def candidate_detected(
        self,
        symbol: str,
        side: str,
        volume: float,
        dominance: float,
        price_change: float
    ):
        """Log when a window first qualifies as a candidate."""
        self.logger.info(
            "Candidate detected",
            extra={
                "event": "candidate_detected",
                "symbol": symbol,
                "side": side,
                "volume_usd": volume,
                "dominance": dominance,
                "price_change_pct": price_change
            }
        )

    def exhaustion_confirmed(
        self,
        symbol: str,
        side: str,
        ticks: int,
        aggression_drop_pct: float
    ):
        """Log when the waiting candidate shows momentum exhaustion."""
        self.logger.info(
            "Exhaustion confirmed",
            extra={
                "event": "exhaustion_confirmed",
                "symbol": symbol,
                "side": side,
                "ticks": ticks,
                "aggression_drop_pct": aggression_drop_pct
            }
        )

    def exhaustion_timeout(self, symbol: str, side: str, ticks: int):
        """Log when a candidate is dropped without confirmation."""
        self.logger.info(
            "Exhaustion wait timed out",
            extra={
                "event": "exhaustion_timeout",
                "symbol": symbol,
                "side": side,
                "ticks": ticks
            }
        )

    def alert_sent(self, symbol: str, side: str, signal_type: str, delivered_at: int):
        """Log a delivered alert."""
        self.logger.info(
            "Alert sent",
            extra={
                "event": "alert_sent",
                "symbol": symbol,
                "side": side,
                "signal_type": signal_type,
                "delivered_at": delivered_at
            }
        )

    def alert_failed(
        self,
        symbol: str,
        side: str,
        reason: str,
        error: Optional[str] = None
    ):
        """Log when formatting or delivery of an alert fails."""
        self.logger.error(
            "Alert failed",
            extra={
                "event": "alert_failed",
                "symbol": symbol,
                "side": side,
                "reason": reason,
                "error": error
            }
        )
