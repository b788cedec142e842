from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "cooked_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "cooked_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Model gateway metrics
LLM_REQUESTS_TOTAL = Counter(
    "cooked_llm_requests_total",
    "Model gateway calls",
    ["provider", "mode", "outcome"],
)
LLM_REQUEST_SECONDS = Histogram(
    "cooked_llm_request_seconds",
    "Duration of model gateway calls in seconds",
    ["provider", "mode"],
)

# Two-phase analysis
SCORING_RETRIES_TOTAL = Counter(
    "cooked_scoring_retries_total",
    "Targeted Phase 1 retries for missing categories",
)
SCORING_RUNS_TOTAL = Counter(
    "cooked_scoring_runs_total",
    "Analysis run outcomes",
    ["outcome"],
)

# Long-term memory
MEMORY_EXTRACTION_TOTAL = Counter(
    "cooked_memory_extraction_total",
    "Memory extraction job outcomes",
    ["outcome"],
)
MEMORY_PERSIST_ERRORS_TOTAL = Counter(
    "cooked_memory_persist_errors_total",
    "Swallowed persistence failures",
    ["op"],
)
