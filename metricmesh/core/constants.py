"""
System-Wide Constants for the Metric Mesh

All magic numbers and configuration defaults centralized here.

Time units are epoch seconds unless a name says otherwise.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024

SECOND_MS: Final[int] = 1000
MINUTE: Final[int] = 60
HOUR: Final[int] = 60 * MINUTE
DAY: Final[int] = 24 * HOUR
WEEK: Final[int] = 7 * DAY
YEAR: Final[int] = 365 * DAY

# =============================================================================
# RECORD LAYOUT
# =============================================================================
SCHEMA_VERSION: Final[int] = 1
DEFAULT_PREFIX: Final[str] = "metric"
DEFAULT_OWNER: Final[str] = "default"
KEY_SEPARATOR: Final[str] = "#"

# Largest integer a double represents exactly; seq wraps to 0 past it
MAX_SEQ: Final[int] = 2**53 - 1

# Significant digits retained for stored sums/extrema
SUM_PRECISION_DIGITS: Final[int] = 16

# =============================================================================
# PERCENTILES
# =============================================================================
DEFAULT_P_RESOLUTION: Final[int] = 0
MAX_P_RESOLUTION: Final[int] = 1000

# =============================================================================
# RELIABILITY
# =============================================================================
WRITE_MAX_RETRIES: Final[int] = 10
RETRY_BASE_MS: Final[int] = 10
RETRY_MAX_DELAY_MS: Final[int] = 10 * SECOND_MS

# =============================================================================
# PAGINATION
# =============================================================================
METRIC_LIST_LIMIT: Final[int] = 10000
DEFAULT_PAGE_SIZE: Final[int] = 100

# =============================================================================
# PAYLOAD ENCODING
# =============================================================================
COMPRESSION_THRESHOLD_BYTES: Final[int] = 1 * KB
