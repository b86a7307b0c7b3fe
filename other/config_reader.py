import os
from typing import List, Optional
from environs import Env
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

start_path = os.path.dirname(os.path.dirname(__file__))
dotenv_path = os.path.join(start_path, '.env')
env = Env()
env.read_env(dotenv_path)


class Settings(BaseSettings):
    db_url: str = "sqlite+aiosqlite:///pending_transfers.db"
    storage_backend: str = "sqlalchemy"  # sqlalchemy | memory
    transfer_backend: str = "local"  # local | remote
    store_timeout_seconds: float = 10.0

    # HTTP boundary, also used by the remote client
    api_base_url: str = "http://localhost:8000"
    api_key: Optional[SecretStr] = None
    cron_secret: Optional[SecretStr] = None
    webapp_host: str = "0.0.0.0"
    webapp_port: int = 8000

    # escrow contract
    escrow_use_mock: bool = False
    escrow_network: str = "celo-sepolia"
    escrow_rpc_url: Optional[str] = None
    escrow_contract_address: Optional[str] = None
    escrow_token_address: str = "0xA99dC247d6b7B2E3ab48a1fEE101b83cD6aCd82a"
    escrow_treasury_wallet: Optional[str] = None
    escrow_operator_key: Optional[SecretStr] = None
    escrow_fee_currency: Optional[str] = None
    escrow_salt_version: str = "MS_ESCROW_V1"
    escrow_timeout_seconds: float = 180.0

    # lifecycle
    expiry_days: int = 7
    reminder_hours: int = 48
    expiry_sweep_minutes: int = 60
    reminder_sweep_minutes: int = 360
    supported_chains: List[str] = ["celo-sepolia"]

    # collaborators
    user_directory_url: Optional[str] = None
    user_directory_key: Optional[SecretStr] = None
    email_api_url: Optional[str] = None
    support_email: str = "support@metasend.io"
    app_url: str = "https://metasend.vercel.app"
    notification_max_pending: int = 100

    sentry_dsn: Optional[str] = None
    start_path: str = start_path

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='allow',
        case_sensitive=False,
        protected_namespaces=()
    )


config = Settings()
config.supported_chains = env.list("CHAIN_LIST", config.supported_chains)
