"""Pytest configuration for Audit Toolkit."""


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "lifecycle: mark test as a full record lifecycle scenario"
    )
