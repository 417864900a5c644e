"""Shared test helpers: entity declarations and a recording event sink."""
