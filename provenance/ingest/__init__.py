"""Diff parsing, GitHub access and webhook handling."""
