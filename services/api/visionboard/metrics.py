"""Prometheus metric definitions for the vision board API.

Single source of truth for all custom metrics. Import from here in API and Celery code.
"""

from prometheus_client import Counter, Histogram

# --- Celery task metrics ---

celery_task_total = Counter(
    "visionboard_celery_task_total",
    "Total Celery tasks executed",
    ["task_name", "status"],
)

celery_task_duration_seconds = Histogram(
    "visionboard_celery_task_duration_seconds",
    "Celery task duration in seconds",
    ["task_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# --- Auth ---

oauth_callbacks_total = Counter(
    "visionboard_oauth_callbacks_total",
    "OAuth callbacks by outcome",
    ["outcome"],
)

token_refresh_total = Counter(
    "visionboard_token_refresh_total",
    "Canva token refresh attempts by outcome",
    ["outcome"],
)

# --- Sync ---

sync_pushes_total = Counter(
    "visionboard_sync_pushes_total",
    "Sync push batches committed",
)

sync_entries_skipped_total = Counter(
    "visionboard_sync_entries_skipped_total",
    "Sync push entries dropped by validation",
    ["collection"],
)

sync_rows_pruned_total = Counter(
    "visionboard_sync_rows_pruned_total",
    "Dated log rows removed by retention",
)

# --- Gift codes ---

gift_redemptions_total = Counter(
    "visionboard_gift_redemptions_total",
    "Gift code redemption attempts by outcome",
    ["outcome"],
)

# --- Exports ---

export_jobs_total = Counter(
    "visionboard_export_jobs_total",
    "Export jobs reaching a final state",
    ["state"],
)

export_poll_duration_seconds = Histogram(
    "visionboard_export_poll_duration_seconds",
    "Time spent polling a Canva export job",
    buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 90.0, 120.0),
)
