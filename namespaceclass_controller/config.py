"""Configuration settings for the NamespaceClass Controller."""

# CRD Settings
CRD_GROUP = "akuity.io.my.domain"
CRD_VERSION = "v1"
CRD_PLURAL = "namespaceclasses"
CRD_KIND = "NamespaceClass"

# Namespace label / annotation keys
CLASS_LABEL = "namespaceclass.akuity.io/name"
LAST_CLASS_ANNOTATION = "namespaceclass.akuity.io/last-name"

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_DELAY_SECONDS = 5
RESYNC_INTERVAL_SECONDS = 300

# Worker settings
MAX_CONCURRENT_RECONCILES = 2

# Requeue backoff (exponential, capped)
BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MAX_SECONDS = 300.0

# Optimistic concurrency retries for status / namespace writes
CONFLICT_RETRY_LIMIT = 5
