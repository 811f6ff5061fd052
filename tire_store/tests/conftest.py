import os
import tempfile

import pytest

# The app reads its data and log directories at import time
os.environ.setdefault('TIRE_STORE_DATA_DIR', tempfile.mkdtemp(prefix='tire_store_data_'))
os.environ.setdefault('TIRE_STORE_LOGS_DIR', tempfile.mkdtemp(prefix='tire_store_logs_'))
os.environ['TIRE_STORE_PROFILING'] = '0'

from tire_store.app_container import AppContainer, get_container  # noqa: E402
from tire_store.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def container(tmp_path):
    """Fresh container on an empty data directory for every test."""
    AppContainer.reset_instance()
    c = get_container(str(tmp_path))
    yield c
    AppContainer.reset_instance()


@pytest.fixture
def client():
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c
