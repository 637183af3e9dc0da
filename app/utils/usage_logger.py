"""
Usage governance event logging.
Writes warnings, restrictions, suspicious patterns, resets and appeals as
structured JSON lines for auditing and for the admin usage dashboards.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings


class UsageEventLogger:
    """Structured logging for AI usage governance events"""

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir or settings.USAGE_LOG_DIR)
        self.logger = logging.getLogger('usage_events')
        self.logger.setLevel(getattr(logging, settings.USAGE_LOG_LEVEL.upper(), logging.INFO))

        if settings.LOG_USAGE_EVENTS and not self.logger.handlers:
            self._configure_handler()

    def _configure_handler(self):
        """Configure the usage event file handler"""
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(self.log_dir / "usage_events.log")
        except OSError as e:
            logging.getLogger(__name__).warning(f"Usage event log file unavailable: {str(e)}")
            return

        # JSON formatter for structured logs
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": %(message)s}',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def log_usage_event(self, event_type: str, user_id: Optional[str], feature_type: Optional[str],
                        details: Dict[str, Any], severity: str = "INFO"):
        """
        Log a usage governance event with structured data

        Args:
            event_type: Type of event (e.g. 'first_warning', 'restriction_applied')
            user_id: ID of user involved in event, None for batch jobs
            feature_type: Feature the event concerns, None for batch jobs
            details: Additional event details
            severity: Log severity level
        """
        if not settings.LOG_USAGE_EVENTS:
            return

        event_data = {
            "event_type": event_type,
            "user_id": user_id,
            "feature_type": feature_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": severity,
            "details": details,
            "source": "ai_usage_monitor"
        }

        log_message = json.dumps(event_data, default=str)

        if severity == "ERROR":
            self.logger.error(log_message)
        elif severity == "WARNING":
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

    def log_warning_issued(self, user_id: str, feature_type: str, violation: Dict[str, Any]):
        self.log_usage_event(
            event_type=violation["type"],
            user_id=user_id,
            feature_type=feature_type,
            details={
                "period": violation.get("period"),
                "current": violation.get("current"),
                "limit": violation.get("limit"),
                "percentage": violation.get("percentage"),
                "action": "warning_logged"
            },
            severity="INFO" if violation["type"] == "first_warning" else "WARNING"
        )

    def log_restriction_applied(self, user_id: str, feature_type: str, restriction_id: str,
                                end_time: Optional[datetime], reason: str):
        self.log_usage_event(
            event_type="restriction_applied",
            user_id=user_id,
            feature_type=feature_type,
            details={
                "restriction_id": restriction_id,
                "end_time": end_time.isoformat() if end_time else None,
                "reason": reason,
                "action": "feature_blocked"
            },
            severity="WARNING"
        )

    def log_restrictions_lifted(self, user_id: Optional[str], feature_type: Optional[str],
                                count: int, trigger: str):
        self.log_usage_event(
            event_type="restriction_lifted",
            user_id=user_id,
            feature_type=feature_type,
            details={"restrictions": count, "trigger": trigger, "action": "feature_restored"}
        )

    def log_suspicious_pattern(self, user_id: str, feature_type: str, pattern: Dict[str, Any]):
        self.log_usage_event(
            event_type="suspicious_pattern",
            user_id=user_id,
            feature_type=feature_type,
            details=pattern,
            severity="WARNING"
        )

    def log_counter_reset(self, scope: str, rows: int, user_id: Optional[str] = None,
                          feature_type: Optional[str] = None):
        self.log_usage_event(
            event_type="counter_reset",
            user_id=user_id,
            feature_type=feature_type,
            details={"scope": scope, "rows": rows}
        )

    def log_appeal(self, event_type: str, user_id: str, appeal_id: str, restriction_id: str,
                   reviewer_id: Optional[str] = None):
        self.log_usage_event(
            event_type=event_type,
            user_id=user_id,
            feature_type=None,
            details={
                "appeal_id": appeal_id,
                "restriction_id": restriction_id,
                "reviewed_by": reviewer_id
            }
        )


# Global usage event logger instance
usage_logger = UsageEventLogger()
