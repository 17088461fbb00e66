"""Fixtures and test doubles for tests in tests/*."""
