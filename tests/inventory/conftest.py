import pytest


@pytest.fixture(autouse=True)
async def _seeded_catalog(catalog):
    """Ledger writes need the product and distributor rows to exist."""
    yield
