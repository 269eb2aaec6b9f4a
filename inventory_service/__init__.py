"""Inventory consistency service: stock ledger, reservations and availability cache."""
