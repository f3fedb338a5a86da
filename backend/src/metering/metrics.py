"""Metering metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Rate counter metrics
rate_checks_total = Counter(
    "metering_rate_checks_total",
    "Total usage counter increments",
    labelnames=["feature", "owner_type", "schema", "allowed"],
)

rate_fail_open_total = Counter(
    "metering_rate_fail_open_total",
    "Usage checks allowed because the store was unavailable",
    labelnames=["feature"],
)

# Charge metrics
charges_total = Counter(
    "metering_charges_total",
    "Total routed charges",
    labelnames=["feature", "pool"],
)

charge_tenths_total = Counter(
    "metering_charge_tenths_total",
    "Total charged amount in tenths of a credit",
    labelnames=["feature", "pool"],
)

charge_rejections_total = Counter(
    "metering_charge_rejections_total",
    "Charges rejected before dispatch",
    labelnames=["feature", "reason"],  # reason: insufficient_funds, usage_limit_exceeded, ...
)

idempotent_replays_total = Counter(
    "metering_idempotent_replays_total",
    "Debits answered from an existing idempotency record",
    labelnames=["pool"],
)

# Credit pack metrics
credit_packs_applied_total = Counter(
    "metering_credit_packs_applied_total",
    "Credit packs applied to balances",
)

credit_packs_duplicate_total = Counter(
    "metering_credit_packs_duplicate_total",
    "Credit pack deliveries ignored because the pack was already applied",
)

# Store health metrics
malformed_records_total = Counter(
    "metering_malformed_records_total",
    "Stored values that failed schema validation and were treated as empty",
    labelnames=["namespace"],
)

store_unavailable_total = Counter(
    "metering_store_unavailable_total",
    "Operations that found the store unavailable",
    labelnames=["operation"],
)
