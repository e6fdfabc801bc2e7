import pytest
from httpx import ASGITransport, AsyncClient

from beatbloom.main import app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def override_db():
    """Install a mock session as the ``get_db`` dependency for one test.

    Usage::

        def test_x(override_db):
            mock_db = override_db(AsyncMock())
    """
    from beatbloom.database import get_db

    def _install(mock_db):
        async def _override_get_db():
            yield mock_db

        app.dependency_overrides[get_db] = _override_get_db
        return mock_db

    yield _install
    app.dependency_overrides.clear()
