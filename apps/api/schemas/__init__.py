"""Typed results returned by the ledger services."""
