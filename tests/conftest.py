"""Shared test fixtures for the billing test suite."""

import os
import pytest
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env")

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.user_context import actor_context, clear_current_actor

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "schema.sql"


# =============================================================================
# TEST ACTOR CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# ACTOR CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_current_actor()
    yield
    clear_current_actor()


@pytest.fixture
def test_user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Run the test body as the primary test user."""
    with actor_context(str(test_user_id)):
        yield test_user_id


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db_url():
    """Test database URL. Database-backed tests skip without one."""
    url = os.getenv("COLDCHAIN_TEST_DATABASE_URL")
    if not url:
        pytest.skip("COLDCHAIN_TEST_DATABASE_URL not set")
    return url


@pytest.fixture(scope="session")
def db_session(db_url):
    """Session-scoped PostgresClient with the schema applied."""
    from clients.postgres_client import PostgresClient

    client = PostgresClient(db_url, maxconn=30)
    with client.transaction() as tx:
        tx.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def db(db_session):
    """PostgresClient over empty billing tables."""
    db_session.execute("""
        TRUNCATE
            audit_log, payments, invoice_items, invoices, invoice_sequences,
            rentals, tricycles, cold_plates, cold_boxes,
            order_items, orders, products, sites
        CASCADE
    """)
    return db_session
