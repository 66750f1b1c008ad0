import pytest

from readsync.settings import SyncSettings


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests with no network or threads")
    config.addinivalue_line("markers", "threaded: tests that rely on background threads and timing")


@pytest.fixture
def settings():
    return SyncSettings(
        server_url="http://192.168.1.20:7200",
        username="reader",
        userkey="5f4dcc3b5aa765d61d8327deb882cf99",
        device_id="DEVICE01",
        device_name="Test Device",
        strategy="prompt",
    )
