"""Usage metering and credit ledger service."""
