"""Shared pytest configuration for the adaptation engine test suite."""


def pytest_configure(config):
    config.addinivalue_line("markers", "fast: quick unit tests (<100ms)")
    config.addinivalue_line("markers", "medium: tests touching several components")
    config.addinivalue_line("markers", "slow: long running simulation tests")
    config.addinivalue_line("markers", "unit: isolated unit tests")
    config.addinivalue_line("markers", "integration: end-to-end engine tests")
