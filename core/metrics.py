"""Prometheus metrics for monitoring."""

from prometheus_client import Counter, Histogram

# Challenge metrics
challenges_created_total = Counter("challenges_created_total", "Total number of remote challenges created")

challenges_resolved_total = Counter(
    "challenges_resolved_total", "Total number of challenges accepted or declined", ["outcome"]
)

# Admission control
lock_conflicts_total = Counter("lock_conflicts_total", "Total number of lock acquisitions rejected as AlreadyLocked")

# Turn metrics
turns_submitted_total = Counter("turns_submitted_total", "Total number of turn submissions", ["outcome"])

matches_ended_total = Counter("matches_ended_total", "Total number of matches reaching a terminal status", ["reason"])

# Sweeper metrics
sweep_runs_total = Counter("sweep_runs_total", "Total number of expiration sweeps executed")

sweep_expired_total = Counter("sweep_expired_total", "Total number of matches expired by the sweeper", ["kind"])

sweep_duration_seconds = Histogram("sweep_duration_seconds", "Expiration sweep duration in seconds")

# Change feed
feed_events_published_total = Counter(
    "feed_events_published_total", "Total number of match events relayed to the change feed", ["event_type"]
)

notifications_emitted_total = Counter(
    "notifications_emitted_total", "Total number of push notification payloads emitted", ["event_type"]
)

# Response time metrics
api_request_duration = Histogram(
    "api_request_duration_seconds", "API request duration in seconds", ["method", "endpoint", "status"]
)
