"""Shared test support code (clock, data builders, log inspection)."""
