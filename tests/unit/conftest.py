import pytest

from tests.helpers.synthetic_data import sinusoidal_flow_channel


def pytest_collection_modifyitems(items):
    """Apply unit marker to all tests in this directory."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def flow_channel():
    """Forty seconds of 15 breaths/min sinusoidal flow at 25 Hz."""
    return sinusoidal_flow_channel(num_breaths=10)
