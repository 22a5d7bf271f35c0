"""Process-wide pipeline runtime.

``PipelineRuntime`` owns every long-lived collaborator of a process (entity
store, history, scheduler, event bus, notifications). It is created once at
start-up and handed to the API through ``app.state``.
"""

import logging
from typing import Optional, Tuple

from github_explorer.core.config import Settings, settings
from github_explorer.core.events import EventBus
from github_explorer.core.github_client import GitHubClient
from github_explorer.core.history import PipelineHistoryStore
from github_explorer.core.notifications import NotificationService
from github_explorer.core.operations import PipelineDispatcher, PipelineOperations
from github_explorer.core.progress import LoggingReporter
from github_explorer.core.redis import get_redis_client
from github_explorer.core.scheduler import PipelineScheduler
from github_explorer.core.schedules import RedisScheduleStore
from github_explorer.core.status import PipelineStatusService
from github_explorer.core.store import EntityStore, RedisEntityStore
from github_explorer.pipelines.orchestrator import PipelineOrchestrator, ReporterFactory
from github_explorer.pipelines.registry import create_default_registry
from github_explorer.pipelines.sitemap.storage import SitemapStorage

logger = logging.getLogger(__name__)


def build_orchestrator(
    redis_client=None,
    history=None,
    store: Optional[EntityStore] = None,
    config: Optional[Settings] = None,
    reporter_factory: Optional[ReporterFactory] = None,
) -> Tuple[PipelineOrchestrator, GitHubClient]:
    """Orchestrator wired to Redis; the caller closes the returned GitHub client."""
    config = config or settings
    redis_client = redis_client or get_redis_client()
    github = GitHubClient(config)
    registry = create_default_registry(
        store or RedisEntityStore(redis_client),
        github=github,
        sitemap_storage=SitemapStorage(config.sitemap_output_dir),
        config=config,
    )
    orchestrator = PipelineOrchestrator(
        registry,
        history or PipelineHistoryStore(redis_client),
        reporter_factory=reporter_factory or (lambda _t: LoggingReporter()),
    )
    return orchestrator, github


class PipelineRuntime:
    def __init__(
        self,
        *,
        config: Settings,
        store: EntityStore,
        history,
        orchestrator: PipelineOrchestrator,
        events: EventBus,
        notifications: NotificationService,
        scheduler: PipelineScheduler,
        operations: PipelineOperations,
        status: PipelineStatusService,
        sitemap_storage: SitemapStorage,
        github: Optional[GitHubClient] = None,
    ):
        self.config = config
        self.store = store
        self.history = history
        self.orchestrator = orchestrator
        self.events = events
        self.notifications = notifications
        self.scheduler = scheduler
        self.operations = operations
        self.status = status
        self.sitemap_storage = sitemap_storage
        self.github = github
        self.started = False

    @classmethod
    def create(
        cls,
        redis_client=None,
        config: Optional[Settings] = None,
        dispatcher: Optional[PipelineDispatcher] = None,
        schedule_store=None,
    ) -> "PipelineRuntime":
        from github_explorer.core.docket_tasks import DocketDispatcher

        config = config or settings
        redis_client = redis_client or get_redis_client()
        store = RedisEntityStore(redis_client)
        history = PipelineHistoryStore(redis_client)
        orchestrator, github = build_orchestrator(
            redis_client, history=history, store=store, config=config
        )
        pipeline_types = orchestrator.registry.types()

        events = EventBus()
        notifications = NotificationService(capacity=config.notification_capacity)
        scheduler = PipelineScheduler(
            orchestrator,
            schedule_store or RedisScheduleStore(),
            events,
            pipeline_types,
            poll_interval=config.scheduler_poll_interval,
        )
        operations = PipelineOperations(history, dispatcher or DocketDispatcher(), pipeline_types)
        return cls(
            config=config,
            store=store,
            history=history,
            orchestrator=orchestrator,
            events=events,
            notifications=notifications,
            scheduler=scheduler,
            operations=operations,
            status=PipelineStatusService(store),
            sitemap_storage=SitemapStorage(config.sitemap_output_dir),
            github=github,
        )

    async def start(self, seed_defaults: bool = True, run_scheduler: bool = True) -> None:
        self.notifications.attach(self.events)
        await self.events.start()
        await self.scheduler.initialize()
        if seed_defaults:
            seeded = await self.scheduler.seed_default_schedules(self.config.default_schedules)
            if seeded:
                logger.info(f"Seeded {len(seeded)} default schedules")
        if run_scheduler:
            self.scheduler.start()
        self.started = True
        logger.info("Pipeline runtime started")

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.events.stop()
        if self.github is not None:
            await self.github.aclose()
        self.started = False
        logger.info("Pipeline runtime stopped")
