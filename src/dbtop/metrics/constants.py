from __future__ import annotations

"""Shared vocabulary for the dbtop metrics subsystem."""

SCHEMA_VERSION = "v1"
FRAME_SCHEMA = f"dbtop.frame.{SCHEMA_VERSION}"
FRAME_TYPE = "frame"

# Vendor-neutral cumulative counters (adapters translate native names into these).
EXECUTE_COUNT = "execute_count"
LOGICAL_READS = "logical_reads"
PHYSICAL_READS = "physical_reads"
PHYSICAL_WRITES = "physical_writes"
REDO_BYTES = "redo_bytes"
COMMITS = "commits"
ROLLBACKS = "rollbacks"
PARSE_TOTAL = "parse_total"
PARSE_HARD = "parse_hard"
PHYSICAL_READ_BYTES = "physical_read_bytes"
PHYSICAL_WRITE_BYTES = "physical_write_bytes"

COUNTER_NAMES: tuple[str, ...] = (
    EXECUTE_COUNT,
    LOGICAL_READS,
    PHYSICAL_READS,
    PHYSICAL_WRITES,
    REDO_BYTES,
    COMMITS,
    ROLLBACKS,
    PARSE_TOTAL,
    PARSE_HARD,
    PHYSICAL_READ_BYTES,
    PHYSICAL_WRITE_BYTES,
)

# Time-model counters, microseconds.
DB_TIME_US = "db_time_us"
DB_CPU_US = "db_cpu_us"

# Rate Mapping / gauge labels.
AVERAGE_ACTIVE_SESSIONS = "Average Active Sessions"
EXECUTIONS_PER_SEC = "Executions Per Sec"
LOGICAL_READS_PER_SEC = "Logical Reads Per Sec"
PHYSICAL_READS_PER_SEC = "Physical Reads Per Sec"
PHYSICAL_WRITES_PER_SEC = "Physical Writes Per Sec"
REDO_PER_SEC = "Redo Generated Per Sec"
DB_TIME_PER_SEC = "Database Time Per Sec"
CPU_USAGE_PER_SEC = "CPU Usage Per Sec"
COMMITS_PER_SEC = "User Commits Per Sec"
ROLLBACKS_PER_SEC = "User Rollbacks Per Sec"
PARSE_TOTAL_PER_SEC = "Total Parse Count Per Sec"
PARSE_HARD_PER_SEC = "Hard Parse Count Per Sec"
BUFFER_CACHE_HIT_RATIO = "Buffer Cache Hit Ratio"
READ_BYTES_PER_SEC = "Physical Read Total Bytes Per Sec"
WRITE_BYTES_PER_SEC = "Physical Write Total Bytes Per Sec"
HOST_CPU_UTIL = "Host CPU Utilization (%)"
WAIT_TIME_RATIO = "Database Wait Time Ratio"

# Counter -> rate label for every throughput-style counter.
THROUGHPUT_RATES: tuple[tuple[str, str], ...] = (
    (EXECUTE_COUNT, EXECUTIONS_PER_SEC),
    (LOGICAL_READS, LOGICAL_READS_PER_SEC),
    (PHYSICAL_READS, PHYSICAL_READS_PER_SEC),
    (PHYSICAL_WRITES, PHYSICAL_WRITES_PER_SEC),
    (REDO_BYTES, REDO_PER_SEC),
    (COMMITS, COMMITS_PER_SEC),
    (ROLLBACKS, ROLLBACKS_PER_SEC),
    (PARSE_TOTAL, PARSE_TOTAL_PER_SEC),
    (PARSE_HARD, PARSE_HARD_PER_SEC),
    (PHYSICAL_READ_BYTES, READ_BYTES_PER_SEC),
    (PHYSICAL_WRITE_BYTES, WRITE_BYTES_PER_SEC),
)

RATE_LABELS: tuple[str, ...] = tuple(label for _, label in THROUGHPUT_RATES) + (
    BUFFER_CACHE_HIT_RATIO,
)
SYNTHETIC_GAUGE_LABELS: tuple[str, ...] = (
    AVERAGE_ACTIVE_SESSIONS,
    DB_TIME_PER_SEC,
    CPU_USAGE_PER_SEC,
)

# Flat metric keys handed to renderers and written into frames.
METRIC_KEYS: tuple[str, ...] = (
    "host_cpu_util",
    "active_sessions",
    "sql_exec_per_sec",
    "logical_reads_per_sec",
    "physical_reads_per_sec",
    "physical_read_mb_per_sec",
    "physical_writes_per_sec",
    "physical_write_mb_per_sec",
    "redo_mb_per_sec",
    "db_time_per_sec",
    "cpu_time_per_sec",
    "wait_time_per_sec",
    "wait_time_ratio",
    "commits_per_sec",
    "rollbacks_per_sec",
    "tran_per_sec",
    "parse_total_per_sec",
    "hard_parses_per_sec",
    "buffer_cache_hit",
)

# Frame provenance.
COLLECTOR_ON = "ON"
COLLECTOR_ERR = "ERR"
SOURCE_COLLECTOR = "collector"
SOURCE_SYNTHETIC = "synthetic"
SECTION_METRICS = "metrics"
SECTION_SESSIONS = "sessions"
SECTION_WAITS = "wait_events"
SECTION_HOTSPOTS = "sql_hotspots"
SECTIONS: tuple[str, ...] = (SECTION_METRICS, SECTION_SESSIONS, SECTION_WAITS, SECTION_HOTSPOTS)

MIN_ELAPSED_SECONDS = 0.5
FALLBACK_ELAPSED_SECONDS = 1.0
DEFAULT_TOP_WAITS = 12
DEFAULT_HISTORY_CAPACITY = 60
DEFAULT_SPARKLINE_WIDTH = 40

__all__ = [
    "SCHEMA_VERSION",
    "FRAME_SCHEMA",
    "FRAME_TYPE",
    "COUNTER_NAMES",
    "DB_TIME_US",
    "DB_CPU_US",
    "THROUGHPUT_RATES",
    "RATE_LABELS",
    "SYNTHETIC_GAUGE_LABELS",
    "METRIC_KEYS",
    "COLLECTOR_ON",
    "COLLECTOR_ERR",
    "SOURCE_COLLECTOR",
    "SOURCE_SYNTHETIC",
    "SECTIONS",
    "SECTION_METRICS",
    "SECTION_SESSIONS",
    "SECTION_WAITS",
    "SECTION_HOTSPOTS",
    "MIN_ELAPSED_SECONDS",
    "FALLBACK_ELAPSED_SECONDS",
    "DEFAULT_TOP_WAITS",
    "DEFAULT_HISTORY_CAPACITY",
    "DEFAULT_SPARKLINE_WIDTH",
]
