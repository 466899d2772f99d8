"""Application configuration derived from the environment and the chain table."""
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings, overridable via STEPCLIMB_* environment variables."""

    model_config = ConfigDict(env_prefix="STEPCLIMB_")

    # Server
    debug: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Protocol
    protocol_version: str = "1.0"

    # Ledger
    default_chain: str = "berachain"
    ledger_variant: str = "standard"  # "standard" | "entropy"
    max_query_window: int = 30  # blocks per log query, RPC provider limit
    receipt_poll_interval_seconds: float = 1.0

    # History ("last played games")
    history_window_blocks: int = 1000
    history_max_records: int = 5

    # Points service (Merits)
    merits_api_url: str = "https://merits-staging.blockscout.com/api/v1"
    merits_partner_api_url: str = "https://merits-staging.blockscout.com/partner/api/v1"
    merits_api_key: str = ""
    reward_amount_per_start: float = 1.0
    reward_description: str = "Step climb game started"
    http_timeout_seconds: float = 10.0

    # Archive
    archive_ttl_seconds: int = 0  # 0 keeps summaries forever


settings = Settings()


class ChainConfig(BaseModel):
    """Static description of one supported network."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    chain_id: int
    rpc_url: str
    explorer_url: str
    merits_api_url: str
    currency: str


SUPPORTED_CHAINS: dict[str, ChainConfig] = {
    "berachain": ChainConfig(
        id="berachain",
        display_name="Berachain",
        chain_id=80094,
        rpc_url="https://rpc.berachain.com/",
        explorer_url="https://berascan.com",
        merits_api_url="https://merits-staging.blockscout.com/api/v1",
        currency="BERA",
    ),
    "coston2": ChainConfig(
        id="coston2",
        display_name="Coston2",
        chain_id=114,
        rpc_url="https://coston2-api.flare.network/ext/C/rpc",
        explorer_url="https://coston2-explorer.flare.network",
        merits_api_url="https://merits-staging.blockscout.com/api/v1",
        currency="C2FLR",
    ),
}


def get_chain_config(chain: str) -> ChainConfig:
    """Look up a chain by its short id. Raises VALIDATION_FAILED if unsupported."""
    from stepclimb.errors import ValidationError

    config = SUPPORTED_CHAINS.get(chain)
    if config is None:
        raise ValidationError(f"Unsupported chain: {chain}")
    return config


class WalletContext(BaseModel):
    """Connection context injected into the adapter and the state machine.

    Created once per wallet connection; discarded on disconnect.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    chain: ChainConfig
