"""Prometheus counters for due scans, channel sends and adherence reports."""

from prometheus_client import Counter


scans_total = Counter(
    "medreminder_scans_total",
    "Total due-window scan ticks that ran",
)

scans_skipped_total = Counter(
    "medreminder_scans_skipped_total",
    "Scan ticks skipped because a previous tick was still running",
)

scans_failed_total = Counter(
    "medreminder_scans_failed_total",
    "Scan ticks aborted because the store was unavailable",
)

channel_attempts_total = Counter(
    "medreminder_channel_attempts_total",
    "Notification channel attempts by outcome",
    ["channel", "status"],
)

occurrences_notified_total = Counter(
    "medreminder_occurrences_notified_total",
    "Occurrences transitioned to notified",
)

reports_delivered_total = Counter(
    "medreminder_reports_delivered_total",
    "Adherence reports delivered",
    ["period"],
)

reports_failed_total = Counter(
    "medreminder_reports_failed_total",
    "Adherence reports that failed to aggregate or deliver",
    ["period"],
)
