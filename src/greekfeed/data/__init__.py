"""
Data Module

Instrument registry, live tables, feed sources and Delta Lake persistence
of hourly snapshots.
"""
