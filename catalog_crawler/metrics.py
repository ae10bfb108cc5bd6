"""Prometheus metrics for the catalog crawler."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("catalog_crawler", "Catalog crawler application info")
app_info.info({"version": "0.1.0", "name": "catalog-crawler"})

# Task metrics
crawl_tasks_total = Counter(
    "crawl_tasks_total",
    "Total number of crawl tasks by outcome",
    ["status"],  # succeeded, failed, skipped
)

crawl_task_duration_seconds = Histogram(
    "crawl_task_duration_seconds",
    "Time spent crawling a single task",
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 3600.0],
)

# Pagination metrics
pagination_cycles_total = Counter(
    "pagination_cycles_total",
    "Total number of scroll/click cycles run by the pagination engine",
)

pagination_stops_total = Counter(
    "pagination_stops_total",
    "Pagination engine terminations by reason",
    ["reason"],
)

# Merge metrics
records_merged_total = Counter(
    "records_merged_total",
    "Candidate records reconciled against the store",
    ["outcome"],  # added, updated, duplicate
)

store_records = Gauge(
    "store_records",
    "Number of records in the store after the last merge",
)

persistence_write_errors_total = Counter(
    "persistence_write_errors_total",
    "Failed writes to durable storage",
    ["target"],  # store, ledger
)

# Browser metrics
engine_recycles_total = Counter(
    "engine_recycles_total",
    "Number of times the rendering engine was torn down and relaunched",
)

extraction_errors_total = Counter(
    "extraction_errors_total",
    "Extraction passes that raised and were treated as empty",
)
