"""Matching, attribution, caching and aggregation."""
