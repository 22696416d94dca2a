"""Credential handling for linked Plaid items."""

import logging

from cryptography.fernet import Fernet, InvalidToken

from spendflow.api import PlaidClient
from spendflow.db.models import Item
from spendflow.db.repository import Repository
from spendflow.errors import ConfigError

log = logging.getLogger("spendflow.auth")


class TokenEncryption:
    """Handles encryption and decryption of access tokens at rest."""

    def __init__(self, encryption_key: str | None):
        try:
            self._fernet = Fernet(encryption_key.encode()) if encryption_key else None
        except ValueError as e:
            raise ConfigError(f"Invalid encryption key: {e}") from e

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str) -> str:
        """Encrypt a value if encryption is configured."""
        if self._fernet:
            return self._fernet.encrypt(value.encode()).decode()
        return value

    def decrypt(self, value: str) -> str:
        """Decrypt a value if encryption is configured."""
        if self._fernet:
            try:
                return self._fernet.decrypt(value.encode()).decode()
            except InvalidToken as e:
                raise ConfigError("Stored access token cannot be decrypted with this key") from e
        return value


async def create_link_token(client: PlaidClient, client_user_id: str = "local-user") -> str:
    """Issue a Link session token. Opaque pass-through to the provider."""
    return await client.link_token_create(client_user_id)


async def exchange_public_token(
    client: PlaidClient,
    repo: Repository,
    encryption: TokenEncryption,
    public_token: str,
) -> Item:
    """Exchange a public token and store the resulting item.

    Re-linking an existing item replaces its access token and keeps its cursor.
    """
    exchange = await client.item_public_token_exchange(public_token)
    item = await repo.save_item(
        Item(
            id=None,
            external_id=exchange.item_id,
            access_token=encryption.encrypt(exchange.access_token),
        )
    )
    log.info(f"Linked item {item.id} ({item.external_id})")
    return item
