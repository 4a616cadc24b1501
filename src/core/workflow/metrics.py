from prometheus_client import Counter

WORKFLOW_TRANSITIONS = Counter(
    "quote_workflow_transitions_total",
    "Committed quote workflow transitions.",
    ["event_type"],
)

NON_ATOMIC_CLAIMS = Counter(
    "quote_workflow_non_atomic_claims_total",
    "Claims applied with read-then-write because no conditional update was available.",
    ["lane"],
)

SIDE_EFFECT_FAILURES = Counter(
    "quote_workflow_side_effect_failures_total",
    "Best-effort side effects that failed after a transition committed.",
    ["effect"],
)
