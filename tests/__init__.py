"""
Test suite for paramdb.

Unit tests live in tests/unit; whole creation runs are exercised against
the in-memory database defined in tests/conftest.py.
"""
