# backend/app/metrics.py
from prometheus_client import Counter, Histogram

# === Core metrics (definitions ONLY here) ===
submissions_created_total = Counter(
    "submissions_created_total", "Request submissions created", ["request_type"]
)

approval_decisions_total = Counter(
    "approval_decisions_total", "Approval actions decided", ["decision"]
)

submissions_finished_total = Counter(
    "submissions_finished_total", "Submissions that left the approval flow", ["status"]
)

fulfillments_total = Counter(
    "fulfillments_total", "Requests fulfilled"
)

training_applications_total = Counter(
    "training_applications_total", "Training applications", ["outcome"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds", "Request latency"
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees "no data"
    for d in ("approved", "rejected"):
        approval_decisions_total.labels(decision=d).inc(0)
    for s in ("approved", "fulfillment", "completed", "rejected"):
        submissions_finished_total.labels(status=s).inc(0)
    for o in ("signed_up", "pending_approval", "approved"):
        training_applications_total.labels(outcome=o).inc(0)

    # unlabeled counters – make them visible
    fulfillments_total.inc(0)
