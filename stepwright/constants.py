"""Engine-wide defaults."""

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 5.0

# Step-visit circuit breaker: max(MIN_STEP_BUDGET, node_count * STEP_BUDGET_PER_NODE)
MIN_STEP_BUDGET = 50
STEP_BUDGET_PER_NODE = 5

DEFAULT_WAIT_TIMEOUT = "24h"

STUB_OUTPUT_MESSAGE = "Step executed (stub)"

BRANCH_YES = "yes"
BRANCH_NO = "no"
BRANCH_LOOP = "loop"
BRANCH_NEXT = "next"
