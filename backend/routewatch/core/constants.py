"""
Centralized constants for scheduling and statistics (Encapsulate What Changes).

Tunable values (quota, intervals, retention) come from settings; these are fixed by design.
"""
# Scheduler job IDs (must match ids used in main.py add_job)
POLL_TICK_JOB_ID = "poll_tick"
NIGHTLY_PRUNE_JOB_ID = "nightly_prune"

# Baseline bucketing: 5-minute time-of-day slots, 288 per day
BUCKET_MINUTES = 5
BUCKETS_PER_DAY = 24 * 60 // BUCKET_MINUTES

# Optimal departure: slots within this fraction of the minimum mean qualify
OPTIMAL_BAND_FRACTION = 0.05

# Provider ids (opaque to the core; used as registry keys and stored on poll records)
PROVIDER_GOOGLE_MAPS = "google_maps"
PROVIDER_TOMTOM = "tomtom"
PROVIDER_MOCK = "mock"

# Shot error codes recorded on triple-test shots (provider failures record the provider's own code)
SHOT_ERROR_EXCEPTION = "EXCEPTION"
SHOT_ERROR_UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"

# Triple-test shot jobs: one APScheduler date job per shot, id "triple_test:<session>:<shot>"
TRIPLE_TEST_JOB_PREFIX = "triple_test"

# Poll outcome error code once a route has spent its provider retries for the day
POLL_ERROR_RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
