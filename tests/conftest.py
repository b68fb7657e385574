import os
import sys
import pathlib
import tempfile
import warnings
import logging as _logging

import pytest
import pytest_asyncio
import httpx

try:
    from sqlalchemy.exc import SAWarning
    warnings.filterwarnings('ignore', category=SAWarning)
except ImportError:
    pass

# Tests never touch a developer database: point the service at a throwaway
# sqlite file and give it a deterministic signing key before anything from
# `daygrid` is imported (config is read at import time).
_TEST_DB_DIR = tempfile.mkdtemp(prefix='daygrid-tests-')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')
os.environ.pop('DEV_MODE', None)
# keep the CLI from reading a real ~/.daygrid/config.json
os.environ['DAYGRID_CONFIG'] = os.path.join(_TEST_DB_DIR, 'client-config.json')

for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# Ensure the project root is on sys.path so both top-level packages import.
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from daygrid.db import init_db  # noqa: E402
from daygrid.main import app  # noqa: E402
from daygrid_client.client import AuthUser  # noqa: E402
from daygrid_client.local_store import LocalStore  # noqa: E402
from helpers import FakeGateway, sign_in  # noqa: E402


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()
    yield


@pytest_asyncio.fixture
async def client(ensure_db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(client):
    data = await sign_in(client)
    client.user = data['user']
    yield client


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(str(tmp_path / 'profile.db'))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def signed_in_gateway():
    return FakeGateway(user=AuthUser(id=7, email='ada@example.com'))
