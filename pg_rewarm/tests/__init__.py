"""
Tests for pg_rewarm.
"""
