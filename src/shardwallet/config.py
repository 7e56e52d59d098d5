"""Application configuration using pydantic-settings.

Every setting can be given through the environment with the ``SHARDWALLET_``
prefix (e.g. ``SHARDWALLET_NODE``) or in a local ``.env`` file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Wallet client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHARDWALLET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Network
    # ======================
    node: str = Field(
        default="http://localhost:9500", description="Default node RPC endpoint"
    )
    shard_endpoints: dict[int, str] = Field(
        default_factory=dict,
        description="Per-shard RPC endpoints as JSON, e.g. {\"0\": \"https://api.s0.t.hmny.io\"}",
    )
    chain_id: str = Field(default="testnet", description="Chain to target (name or number)")
    rpc_timeout: float = Field(default=30.0, description="RPC request timeout in seconds")

    # ======================
    # Keys
    # ======================
    keystore_dir: str = Field(
        default="~/.shardwallet/account-keys", description="Directory holding keystore files"
    )
    signer_backend: str = Field(default="local", description="Signing backend: local or hardware")
    hardware_timeout: Optional[float] = Field(
        default=None, description="Hardware signing timeout in seconds (unbounded if unset)"
    )

    # ======================
    # Transaction behaviour
    # ======================
    dry_run: bool = Field(default=False, description="Build and sign without broadcasting")
    confirmation_wait: int = Field(
        default=0, ge=0, description="Seconds to wait for a receipt (0 = do not wait)"
    )
    permissive_nonce: bool = Field(
        default=False, description="Use nonce 0 when the nonce lookup fails"
    )

    debug: bool = Field(default=False, description="Enable debug logging")

    @field_validator("signer_backend")
    @classmethod
    def _check_signer_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("local", "hardware"):
            raise ValueError("signer_backend must be 'local' or 'hardware'")
        return value

    def get_rpc_url(self, shard_id: int) -> str:
        """Get RPC URL for a shard, falling back to the default node."""
        return self.shard_endpoints.get(shard_id, self.node)

    def get_safe_dict(self) -> dict:
        """Return settings dict suitable for display."""
        return {
            "node": self.node,
            "shard_endpoints": {str(k): v for k, v in self.shard_endpoints.items()},
            "chain_id": self.chain_id,
            "keystore_dir": self.keystore_dir,
            "signer_backend": self.signer_backend,
            "dry_run": self.dry_run,
            "confirmation_wait": self.confirmation_wait,
            "permissive_nonce": self.permissive_nonce,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
