"""Deadline scanning, dedup ledger and reminder dispatch."""
