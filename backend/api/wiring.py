"""
Builds the delivery pipeline from settings.
Every collaborator is constructed here and passed by reference; nothing is a module-level singleton.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from downloaders import (
    DownloadEngineChain,
    TikwmEngine,
    YtDlpEngine,
    database_engine_config,
    settings_engine_config,
)
from forwarder import MappingResolver, ProcessVideoLinkUseCase, default_event_types, register_handlers
from job_queue import JobQueueService, QueueWorker
from notifier import ChannelProvisioner, DiscordRestClient, MediaFetcher, MessagingClient, Notifier
from outbox import EventHandlerRegistry, OutboxDispatcher, OutboxStore
from subscriptions import CreatorWatcher, TikTokFetcher
from utils.polling import PeriodicWorker


@dataclass
class Pipeline:
    session_factory: async_sessionmaker
    chain: DownloadEngineChain
    notifier: Notifier
    outbox: OutboxStore
    handlers: EventHandlerRegistry
    use_case: ProcessVideoLinkUseCase
    dispatcher: OutboxDispatcher
    queue_service: JobQueueService
    queue_worker: QueueWorker
    watcher: Optional[CreatorWatcher] = None
    resources: List[Any] = field(default_factory=list)

    @property
    def workers(self) -> List[PeriodicWorker]:
        workers: List[PeriodicWorker] = [self.dispatcher, self.queue_worker]
        if self.watcher is not None:
            workers.append(self.watcher)
        return workers

    async def start(self):
        for worker in self.workers:
            await worker.start()

    async def stop(self):
        for worker in reversed(self.workers):
            await worker.stop()
        await self.chain.close()
        for resource in self.resources:
            await resource.close()


def build_pipeline(
    app_settings,
    session_factory: async_sessionmaker,
    client: Optional[MessagingClient] = None,
    provisioner: Optional[ChannelProvisioner] = None,
) -> Pipeline:
    """
    Wire engines, outbox, notifier, handlers and workers.

    `client`/`provisioner` default to one DiscordRestClient built from settings.
    """
    resources: List[Any] = []

    if client is None or provisioner is None:
        if not app_settings.DISCORD_BOT_TOKEN:
            logger.warning("DISCORD_BOT_TOKEN is not set; notifications will fail until it is configured")
        discord = DiscordRestClient(
            token=app_settings.DISCORD_BOT_TOKEN or "",
            guild_id=app_settings.DISCORD_GUILD_ID,
            category_id=app_settings.DISCORD_CATEGORY_ID,
            api_base=app_settings.DISCORD_API_BASE,
        )
        resources.append(discord)
        client = client or discord
        provisioner = provisioner or discord

    chain = DownloadEngineChain(
        database_engine_config(session_factory, fallback=settings_engine_config(app_settings))
    )
    chain.register(TikwmEngine(api_url=app_settings.TIKWM_API_URL, timeout=app_settings.DOWNLOAD_TIMEOUT))
    chain.register(YtDlpEngine())

    media_fetcher = MediaFetcher(
        max_bytes=app_settings.NOTIFIER_MAX_ATTACHMENT_BYTES,
        retry_attempts=app_settings.RETRY_MAX_ATTEMPTS,
        retry_delay=app_settings.RETRY_BASE_DELAY,
    )
    resources.append(media_fetcher)

    notifier = Notifier(
        client,
        media_fetcher,
        history_limit=app_settings.NOTIFIER_HISTORY_LIMIT,
        max_attachment_bytes=app_settings.NOTIFIER_MAX_ATTACHMENT_BYTES,
        max_images=app_settings.NOTIFIER_MAX_IMAGES,
        footer_text=app_settings.NOTIFIER_FOOTER_TEXT,
        retry_attempts=app_settings.RETRY_MAX_ATTEMPTS,
        retry_delay=app_settings.RETRY_BASE_DELAY,
        retry_backoff=app_settings.RETRY_BACKOFF,
    )

    outbox = OutboxStore.for_url(
        app_settings.DATABASE_URL,
        lock_timeout=timedelta(seconds=app_settings.OUTBOX_LOCK_TIMEOUT),
    )
    handlers = EventHandlerRegistry()
    register_handlers(handlers, notifier)

    use_case = ProcessVideoLinkUseCase(chain, MappingResolver(provisioner), outbox, session_factory)

    dispatcher = OutboxDispatcher(
        outbox,
        handlers,
        default_event_types(),
        session_factory,
        poll_interval=app_settings.OUTBOX_POLL_INTERVAL,
        batch_size=app_settings.OUTBOX_BATCH_SIZE,
        unknown_event_policy=app_settings.OUTBOX_UNKNOWN_EVENT_POLICY,
    )

    queue_service = JobQueueService(
        session_factory,
        chain,
        notifier,
        batch_size=app_settings.QUEUE_BATCH_SIZE,
        max_attempts=app_settings.QUEUE_MAX_ATTEMPTS,
    )
    queue_worker = QueueWorker(queue_service, interval=app_settings.QUEUE_POLL_INTERVAL)

    watcher = None
    if app_settings.WATCHER_ENABLED:
        watcher = CreatorWatcher(
            TikTokFetcher(),
            use_case,
            session_factory,
            check_interval=app_settings.WATCHER_CHECK_INTERVAL,
            max_concurrent_checks=app_settings.WATCHER_MAX_CONCURRENT_CHECKS,
        )

    return Pipeline(
        session_factory=session_factory,
        chain=chain,
        notifier=notifier,
        outbox=outbox,
        handlers=handlers,
        use_case=use_case,
        dispatcher=dispatcher,
        queue_service=queue_service,
        queue_worker=queue_worker,
        watcher=watcher,
        resources=resources,
    )
