"""
Application Constants

Centralized constants used throughout the application.
"""

# Application metadata
APP_NAME = "eduguard"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Security & audit event pipeline for the education platform"

# HTTP status codes
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_LOCKED = 423
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# Rate limiting defaults
DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_MS = 15 * 60 * 1000   # 15 minutes
DEFAULT_CLEANUP_INTERVAL_MS = 60 * 1000

# Audit batching defaults
DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL_MS = 5000
DEFAULT_WRITE_TIMEOUT_MS = 10000
DEFAULT_QUEUE_WARNING_SIZE = 1000
DEFAULT_FALLBACK_CAPACITY = 100

# Audit query defaults
DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 10000
EXPORT_LIMIT = 10000
RECENT_EVENTS_LIMIT = 10
MAX_VIOLATION_HISTORY = 10

# Suspicious activity heuristic
DEFAULT_PROBE_THRESHOLD = 3
DEFAULT_PROBE_WINDOW_MS = 60 * 1000
MAX_TRACKED_CLIENTS = 10000

# Validation limits
MAX_INPUT_LENGTH = 10000
MAX_TITLE_LENGTH = 255
MAX_CONTENT_LENGTH = 1000000
MAX_FILE_NAME_LENGTH = 255
MAX_FILE_SIZE = 52428800  # 50MB
DEFAULT_ALLOWED_FILE_TYPES = ["application/pdf"]
PAYLOAD_PREVIEW_LENGTH = 100

# Metadata limits
MAX_METADATA_DEPTH = 4
MAX_METADATA_KEYS = 50
MAX_METADATA_STRING_LENGTH = 1000

# HTML sanitization allow-lists
ALLOWED_HTML_TAGS = ["b", "i", "em", "strong", "p", "br"]
ALLOWED_HTML_ATTRIBUTES = ["href", "title", "alt"]

# Executable extensions never accepted for upload
SUSPICIOUS_EXTENSIONS = [".exe", ".bat", ".cmd", ".scr", ".pif", ".com"]

# MIME type -> accepted file extensions
MIME_EXTENSIONS = {
    "application/pdf": [".pdf"],
    "text/plain": [".txt"],
    "text/markdown": [".md", ".markdown"],
    "text/csv": [".csv"],
    "application/msword": [".doc"],
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": [".docx"],
    "image/png": [".png"],
    "image/jpeg": [".jpg", ".jpeg"],
}

# Security levels
SECURITY_LEVEL_LOW = "low"
SECURITY_LEVEL_MEDIUM = "medium"
SECURITY_LEVEL_HIGH = "high"
SECURITY_LEVEL_CRITICAL = "critical"

# Audit sink defaults
DEFAULT_SINK_TABLE = "audit_logs"
DEFAULT_REQUEST_TIMEOUT = 10
DEFAULT_CONNECT_TIMEOUT = 5

# HTTP headers
HEADER_RETRY_AFTER = "Retry-After"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_CLIENT_ID = "X-Client-ID"

# Attached to every HTTP response
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "; ".join([
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
        "img-src 'self' data: https:",
        "frame-ancestors 'none'",
    ]),
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

# Log levels
LOG_LEVEL_DEBUG = "DEBUG"
LOG_LEVEL_INFO = "INFO"
LOG_LEVEL_WARNING = "WARNING"
LOG_LEVEL_ERROR = "ERROR"

# Error messages
ERROR_RATE_LIMIT_EXCEEDED = "Rate limit exceeded. Please try again later."
ERROR_ACCESS_BLOCKED = "Access temporarily blocked due to security concerns."
