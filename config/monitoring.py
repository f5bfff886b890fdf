# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Roster Admin")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class RosterMonitoring:
    """Prometheus metric helpers for roster import, preview and rollback."""

    BATCH_COUNTER = Counter(
        "roster_import_batches_total",
        "Roster import batches by outcome.",
        labelnames=("status",),
    )
    BATCH_LATENCY = Histogram(
        "roster_import_batch_seconds",
        "Duration of roster import transactions.",
        labelnames=("status",),
        buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
    )
    RECORD_COUNTER = Counter(
        "roster_import_records_total",
        "Roster records processed by outcome.",
        labelnames=("outcome",),
    )
    ROLLBACK_COUNTER = Counter(
        "roster_import_rollbacks_total",
        "Roster import rollbacks by outcome.",
        labelnames=("status",),
    )
    ROLLBACK_LATENCY = Histogram(
        "roster_import_rollback_seconds",
        "Duration of roster rollback transactions.",
        labelnames=("status",),
        buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
    )
    PREVIEW_COUNTER = Counter(
        "roster_import_preview_requests_total",
        "Roster preview requests by outcome.",
        labelnames=("status",),
    )
    PREVIEW_LATENCY = Histogram(
        "roster_import_preview_seconds",
        "Latency histogram for roster previews.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    )

    @classmethod
    def record_batch(cls, *, duration_seconds: float, status: str, outcomes: dict | None = None):
        cls.BATCH_COUNTER.labels(status=status).inc()
        cls.BATCH_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
        for outcome, count in (outcomes or {}).items():
            if count:
                cls.RECORD_COUNTER.labels(outcome=outcome).inc(count)

    @classmethod
    def record_rollback(cls, *, duration_seconds: float, status: str):
        cls.ROLLBACK_COUNTER.labels(status=status).inc()
        cls.ROLLBACK_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_preview(cls, *, duration_seconds: float, status: str):
        cls.PREVIEW_COUNTER.labels(status=status).inc()
        cls.PREVIEW_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
