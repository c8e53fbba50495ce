"""
Constants used throughout the PageStore application.

Centralizes magic numbers and limits so the batch, queue and sitemap
paths agree on the same bounds.
"""

# =============================================================================
# URL Fingerprints
# =============================================================================

# Number of hex characters kept from the SHA-256 digest of a canonical URL
FINGERPRINT_LENGTH = 16

# Scheme prepended to submitted URLs that have none
DEFAULT_URL_SCHEME = "https"


# =============================================================================
# Batch Processing
# =============================================================================

# Maximum URLs captured by a single synchronous batch invocation
MAX_BATCH_URLS = 100


# =============================================================================
# Scan Queue
# =============================================================================

# Failures allowed before a queue item is permanently failed
MAX_QUEUE_RETRIES = 3

# Maximum permanently-failed items returned by a status query
PERMANENT_FAILURE_SAMPLE_SIZE = 100

# Items claimed by one worker invocation
QUEUE_WORKER_BATCH_SIZE = 10

# Pause between queue items in milliseconds
QUEUE_REQUEST_DELAY_MS = 200

# Maximum stored length of an error message
MAX_ERROR_LENGTH = 500


# =============================================================================
# Sitemap Expansion
# =============================================================================

# Nested sitemap levels followed below the root document
SITEMAP_MAX_DEPTH = 3

# Nested sitemap URLs followed per document
SITEMAP_MAX_NESTED_PER_LEVEL = 5


# =============================================================================
# Snapshots
# =============================================================================

# Snapshots kept per (tenant, page) before the oldest are deleted
DEFAULT_MAX_SNAPSHOTS_PER_URL = 10

# Default page size when listing snapshot history
DEFAULT_SNAPSHOT_HISTORY_LIMIT = 10

# Response headers copied onto a snapshot record
SNAPSHOT_HEADER_NAMES = (
    "content-type",
    "last-modified",
    "cache-control",
    "x-robots-tag",
    "etag",
)


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

# Outbound page fetch timeout
REQUEST_TIMEOUT = 30

# Fetch attempts per page capture; failed captures are retried by the scan queue
CAPTURE_MAX_ATTEMPTS = 1

# Rendered (headless browser) navigation timeout
RENDER_TIMEOUT = 60


# =============================================================================
# Screenshots
# =============================================================================

DESKTOP_VIEWPORT = {"width": 1440, "height": 900}
MOBILE_VIEWPORT = {"width": 390, "height": 844}
