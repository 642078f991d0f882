# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_momo_config,
)
from clients.postgres_client import PostgresClient, Transaction
from clients.momo_client import MomoClient, MomoConfig, MomoError
