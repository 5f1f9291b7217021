"""Derived-signal analytics: breaths, statistics, episodes and aggregation."""
