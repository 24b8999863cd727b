"""
Metrics instrumentation.

Prometheus counters and histograms for procedure lifecycle, imaging and
archival tiering.
"""
import time
from functools import wraps

from prometheus_client import Counter, Histogram


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # Procedure Metrics
        # ===================================================================
        self.procedure_transition_total = self._create_counter(
            'procedure_transition_total',
            'Procedure status transitions',
            ['from_status', 'to_status', 'trigger']  # trigger: manual|auto
        )

        self.procedure_step_mutation_total = self._create_counter(
            'procedure_step_mutation_total',
            'Procedure step mutations',
            ['action']  # complete|skip|unskip|visit_date
        )

        self.procedure_auto_close_conflict_total = self._create_counter(
            'procedure_auto_close_conflict_total',
            'Auto-close status writes that lost a compare-and-swap'
        )

        # ===================================================================
        # Imaging Metrics
        # ===================================================================
        self.image_upload_total = self._create_counter(
            'image_upload_total',
            'Image uploads and replacements',
            ['kind', 'result']  # kind: upload|replace, result: success|rejected
        )

        self.image_upload_bytes = self._create_histogram(
            'image_upload_bytes',
            'Size of accepted image uploads',
            buckets=[64 * 1024, 256 * 1024, 1024 * 1024, 4 * 1024 * 1024, 10 * 1024 * 1024]
        )

        self.image_rendition_duration_seconds = self._create_histogram(
            'image_rendition_duration_seconds',
            'Duration of thumbnail derivation per image',
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
        )

        self.image_watermark_total = self._create_counter(
            'image_watermark_total',
            'Watermarked renditions served',
            ['result']  # generated|reused
        )

        # ===================================================================
        # Archival Metrics
        # ===================================================================
        self.archival_procedures_total = self._create_counter(
            'archival_procedures_total',
            'Procedures processed by the archival sweep',
            ['result']  # archived|failed
        )

        self.archival_images_migrated_total = self._create_counter(
            'archival_images_migrated_total',
            'Image originals migrated to cold storage',
            ['result']  # migrated|failed|skipped
        )

        self.archival_sweep_duration_seconds = self._create_histogram(
            'archival_sweep_duration_seconds',
            'Duration of one archival sweep',
            buckets=[1, 5, 15, 60, 300, 900, 1800]
        )

    def track_duration(self, histogram_metric):
        """
        Decorator to track coroutine duration.

        Usage:
            @metrics.track_duration(metrics.archival_sweep_duration_seconds)
            async def run_sweep(...):
                ...
        """
        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                start_time = time.monotonic()
                try:
                    return await func(*args, **kwargs)
                finally:
                    histogram_metric.observe(time.monotonic() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
