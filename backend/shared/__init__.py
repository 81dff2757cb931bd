"""Persistence layer shared by the moshpit services."""
