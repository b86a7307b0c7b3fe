from datetime import timedelta
from typing import Optional

from loguru import logger

from core.interfaces.repositories import IRepositoryFactory
from core.interfaces.services import IEscrowDriver, INotificationGateway, IPendingTransferService, IUserDirectory
from core.use_cases.pending_transfer.service import PendingTransferService
from db.db_pool import DatabasePool
from infrastructure.persistence.repository_factory import build_repository_factory
from infrastructure.services.email_notification_service import EmailNotificationService
from infrastructure.services.memory_escrow_driver import InMemoryEscrowDriver
from infrastructure.services.pending_transfer_api_client import PendingTransferApiClient
from infrastructure.services.user_directory_service import HttpUserDirectory, StaticUserDirectory
from infrastructure.services.web3_escrow_driver import Web3EscrowDriver
from infrastructure.workers.notification_dispatcher import NotificationDispatcher


def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


class AppContext:
    """
    Application-wide context container.
    Built once per process and shared by the web app and the scheduler.
    """
    def __init__(
        self,
        service: IPendingTransferService,
        api_key: Optional[str] = None,
        cron_secret: Optional[str] = None,
        db_pool: Optional[DatabasePool] = None,
        repository_factory: Optional[IRepositoryFactory] = None,
        escrow_driver: Optional[IEscrowDriver] = None,
        user_directory: Optional[IUserDirectory] = None,
        notification_gateway: Optional[INotificationGateway] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.service = service
        self.api_key = api_key
        self.cron_secret = cron_secret
        self.db_pool = db_pool
        self.repository_factory = repository_factory
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.notification_gateway = notification_gateway
        self.dispatcher = dispatcher

    @property
    def is_remote(self) -> bool:
        return isinstance(self.service, PendingTransferApiClient)

    async def startup(self):
        if self.db_pool is not None:
            await self.db_pool.create_all()

    async def close(self):
        if self.dispatcher is not None:
            await self.dispatcher.drain()
        for resource in (self.service, self.user_directory, self.notification_gateway):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        if self.db_pool is not None:
            await self.db_pool.dispose()


def build_escrow_driver(config) -> IEscrowDriver:
    if config.escrow_use_mock:
        logger.warning("Escrow mock mode is enabled, no funds move on-chain")
        return InMemoryEscrowDriver(salt_version=config.escrow_salt_version)
    if not config.escrow_contract_address or not config.escrow_treasury_wallet:
        raise ValueError("ESCROW_CONTRACT_ADDRESS and ESCROW_TREASURY_WALLET are required")
    foreign_chains = set(config.supported_chains) - {config.escrow_network}
    if foreign_chains:
        raise ValueError(f"Supported chains {sorted(foreign_chains)} are not served by the "
                         f"{config.escrow_network} escrow contract")
    return Web3EscrowDriver(
        contract_address=config.escrow_contract_address,
        treasury_wallet=config.escrow_treasury_wallet,
        token_address=config.escrow_token_address,
        operator_key=_secret(config.escrow_operator_key),
        network=config.escrow_network,
        rpc_url=config.escrow_rpc_url,
        fee_currency=config.escrow_fee_currency,
        salt_version=config.escrow_salt_version,
        timeout=config.escrow_timeout_seconds,
    )


def build_app_context(config) -> AppContext:
    api_key = _secret(config.api_key)
    cron_secret = _secret(config.cron_secret)

    if config.transfer_backend == "remote":
        client = PendingTransferApiClient(config.api_base_url, api_key, cron_secret=cron_secret)
        return AppContext(service=client, api_key=api_key, cron_secret=cron_secret)
    if config.transfer_backend != "local":
        raise ValueError(f"Unknown transfer backend: {config.transfer_backend}")

    db_pool = DatabasePool(config.db_url) if config.storage_backend == "sqlalchemy" else None
    repository_factory = build_repository_factory(config.storage_backend, db_pool,
                                                  timeout=config.store_timeout_seconds)

    if config.user_directory_url:
        user_directory: IUserDirectory = HttpUserDirectory(config.user_directory_url,
                                                           _secret(config.user_directory_key) or api_key)
    else:
        logger.warning("USER_DIRECTORY_URL is not set, using an empty in-process directory")
        user_directory = StaticUserDirectory()

    notification_gateway = EmailNotificationService(
        api_url=config.email_api_url or config.api_base_url,
        api_key=api_key,
        support_email=config.support_email,
        app_url=config.app_url,
    )
    dispatcher = NotificationDispatcher(max_pending=config.notification_max_pending)
    escrow_driver = build_escrow_driver(config)

    service = PendingTransferService(
        transfer_repository=repository_factory.get_pending_transfer_repository(),
        escrow_driver=escrow_driver,
        user_directory=user_directory,
        notification_gateway=notification_gateway,
        dispatcher=dispatcher,
        supported_chains=config.supported_chains,
        expiry=timedelta(days=config.expiry_days),
        reminder_window=timedelta(hours=config.reminder_hours),
    )
    return AppContext(
        service=service,
        api_key=api_key,
        cron_secret=cron_secret,
        db_pool=db_pool,
        repository_factory=repository_factory,
        escrow_driver=escrow_driver,
        user_directory=user_directory,
        notification_gateway=notification_gateway,
        dispatcher=dispatcher,
    )
