import asyncio

from loguru import logger

from account_operator.clients.aws.builder import AwsClientBuilder
from account_operator.config.settings import LogLevelType, OperatorSettings, load_settings
from account_operator.controllers.account.controller import AccountReconciler
from account_operator.controllers.accountclaim.controller import AccountClaimReconciler
from account_operator.controllers.accountpool.controller import AccountPoolReconciler
from account_operator.controllers.base import ReconcilerContext
from account_operator.core.budget import TotalAccountWatcher
from account_operator.log.logger_setup import setup_logger
from account_operator.log.sensitive import sensitive_log_filter
from account_operator.manager import ReconcileManager
from account_operator.store.manifests import load_manifests
from account_operator.store.memory import InMemoryObjectStore


def create_manager(
    store: InMemoryObjectStore, context: ReconcilerContext, settings: OperatorSettings
) -> ReconcileManager:
    return ReconcileManager(
        store,
        [
            AccountReconciler(context),
            AccountClaimReconciler(context),
            AccountPoolReconciler(context),
        ],
        workers=settings.application.max_concurrent_reconciles,
    )


async def run_operator(
    manifests: str,
    config_path: str = "./config.yaml",
    log_level: LogLevelType | None = None,
    once: bool = False,
) -> None:
    settings = load_settings(config_path)
    setup_logger(log_level or settings.application.log_level)
    sensitive_log_filter.hide_sensitive_strings(*settings.get_sensitive_fields_data())

    store = InMemoryObjectStore()
    await store.load(load_manifests(manifests))

    clients = AwsClientBuilder(store, settings.aws)
    watcher = TotalAccountWatcher(
        await clients.operator_client(),
        settings.aws.account_limit,
        settings.aws.budget_refresh_interval,
    )
    context = ReconcilerContext(store, settings, clients, watcher)
    manager = create_manager(store, context, settings)

    await watcher.start()
    await manager.start()
    try:
        if once:
            await manager.wait_idle()
            logger.info("Nothing left to reconcile, exiting")
        else:
            await asyncio.Event().wait()
    finally:
        await manager.stop()
        await watcher.stop()
