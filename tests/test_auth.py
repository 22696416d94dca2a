"""Tests for access token handling."""

from unittest.mock import AsyncMock

import pytest
from cryptography.fernet import Fernet

from spendflow.api import TokenExchange
from spendflow.auth import TokenEncryption, create_link_token, exchange_public_token
from spendflow.errors import ConfigError


class TestTokenEncryption:
    """Tests for TokenEncryption class."""

    def test_encrypt_decrypt_with_key(self):
        """Test encryption and decryption with a key."""
        encryption = TokenEncryption(Fernet.generate_key().decode())
        encrypted = encryption.encrypt("access-sandbox-123")
        assert encrypted != "access-sandbox-123"
        assert encryption.decrypt(encrypted) == "access-sandbox-123"
        assert encryption.enabled is True

    def test_passthrough_without_key(self):
        """Test that values pass through without a key."""
        encryption = TokenEncryption(None)
        assert encryption.encrypt("plain") == "plain"
        assert encryption.decrypt("plain") == "plain"
        assert encryption.enabled is False

    def test_invalid_key(self):
        """Test that a malformed key is a config error."""
        with pytest.raises(ConfigError):
            TokenEncryption("not-a-fernet-key")

    def test_wrong_key(self):
        """Test that a token encrypted with another key cannot be read."""
        encrypted = TokenEncryption(Fernet.generate_key().decode()).encrypt("secret")
        with pytest.raises(ConfigError):
            TokenEncryption(Fernet.generate_key().decode()).decrypt(encrypted)


class TestLinking:
    """Tests for link token and public token exchange."""

    async def test_create_link_token(self):
        """Test that the link token is passed through."""
        client = AsyncMock()
        client.link_token_create.return_value = "link-sandbox-abc"
        assert await create_link_token(client, "user-9") == "link-sandbox-abc"
        client.link_token_create.assert_awaited_once_with("user-9")

    async def test_relink_keeps_cursor(self, repository):
        """Test that exchanging again for the same item keeps its cursor."""
        client = AsyncMock()
        client.item_public_token_exchange.return_value = TokenExchange(
            access_token="access-1", item_id="item-1"
        )
        encryption = TokenEncryption(None)
        item = await exchange_public_token(client, repository, encryption, "public-1")
        await repository.update_item_cursor(item.id, "c5")

        client.item_public_token_exchange.return_value = TokenExchange(
            access_token="access-2", item_id="item-1"
        )
        relinked = await exchange_public_token(client, repository, encryption, "public-2")

        assert relinked.id == item.id
        assert relinked.access_token == "access-2"
        assert relinked.cursor == "c5"
