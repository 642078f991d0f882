"""Tests for application wiring in main.py."""

from unittest.mock import Mock, patch

from clients.momo_client import MomoClient
from clients.postgres_client import PostgresClient
from core.event_bus import EventBus
from main import build_services, load_momo_client

MOMO_SECRET = {
    "api_user": "api-user",
    "api_key": "api-key",
    "primary_key": "primary-key",
    "callback_url": "https://billing.example.com/api/webhooks/momo",
    "environment": "mtnrwanda",
}


class TestLoadMomoClient:
    """MoMo client construction from Vault."""

    @patch("clients.vault_client.get_momo_config")
    def test_configured_from_vault(self, mock_get):
        mock_get.return_value = MOMO_SECRET

        client = load_momo_client()

        assert client.is_configured() is True
        assert client.config.environment == "mtnrwanda"

    @patch("clients.vault_client.get_momo_config")
    def test_missing_field_disables_mobile_money(self, mock_get):
        mock_get.side_effect = KeyError("Field 'api_key' not found in secret 'coldchain/momo'")

        assert load_momo_client().is_configured() is False

    @patch("clients.vault_client.get_momo_config")
    def test_unreadable_secret_disables_mobile_money(self, mock_get):
        mock_get.side_effect = PermissionError("Access denied")

        assert load_momo_client().is_configured() is False


class TestBuildServices:
    """Service graph shares one bus, database and provider client."""

    def test_services_share_collaborators(self):
        postgres = Mock(spec=PostgresClient)
        momo = Mock(spec=MomoClient)
        bus = EventBus()

        services = build_services(postgres, momo, event_bus=bus)

        assert services["invoice"].event_bus is bus
        assert services["payment"].event_bus is bus
        assert services["payment"].invoices is services["invoice"]
        assert services["payment"].momo is momo
        assert services["webhook"].payments is services["payment"]
        assert services["event_bus"] is bus
