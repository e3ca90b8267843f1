"""
config.py - Centralised configuration for the credential workflow
"""
import logging
from functools import lru_cache
from types import MappingProxyType
from typing import List, Mapping, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    # ERC-1056 registry deployments
    MAINNET_REGISTRY: str = "0xdca7ef03e98e0dc2b855be647c39abe984fcf21b"
    SEPOLIA_REGISTRY: str = "0x03d5003bf0e79c5f5223588f347eba39afbc3818"

    # Typed-data domain
    DOMAIN_NAME: str = "Verifiable Credential"
    DOMAIN_VERSION: str = "1"

    # Verification
    CLOCK_SKEW_SECONDS: int = 300
    DEFAULT_AUDIENCE: Optional[str] = None

    # Issuance
    CREDENTIAL_LIFETIME_SECONDS: Optional[int] = None  # None = no expiry
    PRESENTATION_LIFETIME_SECONDS: Optional[int] = 600

    # Dev wallet for the HTTP service (Hardhat accounts #0 and #1)
    DEV_PRIVATE_KEYS: List[str] = [
        "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
        "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    ]
    DEV_CHAIN_ID: int = 11155111

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="DID_WORKFLOW_", env_file=".env", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> WorkflowSettings:
    """Load settings once per process."""
    return WorkflowSettings()


def registry_table(settings: Optional[WorkflowSettings] = None) -> Mapping[str, str]:
    """Read-only network name -> registry address table."""
    settings = settings or get_settings()
    return MappingProxyType({
        "mainnet": settings.MAINNET_REGISTRY.lower(),
        "sepolia": settings.SEPOLIA_REGISTRY.lower(),
    })


def configure_logging(level: Optional[str] = None):
    """Root logging setup for the HTTP service; a no-op once handlers exist."""
    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
