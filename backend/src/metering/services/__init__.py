"""Counters, ledgers and charge routing."""
