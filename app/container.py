"""
Process-level wiring.

Builds every collaborator from Settings, opens them in dependency order on
startup and closes them in reverse on shutdown. The API and the worker each
create one container; nothing else holds clients at module level.
"""

from app.config import Settings
from app.db.pool import DatabasePoolManager
from app.db.schema import ensure_schema
from app.features.identity_cache.jobs.did_cache_job import DidCacheWarmerHandler
from app.features.identity_cache.repository.did_cache_repository import DidCacheRepository
from app.features.identity_cache.services.identity_resolver import BlueskyIdentityResolver
from app.features.sessions.clients.trusted_users_client import TrustedUsersClient
from app.features.sessions.clients.user_keys_client import UserKeysClient
from app.features.sessions.jobs.recipient_fanout_job import RecipientFanoutHandler
from app.features.sessions.jobs.session_jobs import (
    DeleteSessionKeysHandler,
    RevokeSessionHandler,
    UpdateSessionKeysHandler,
)
from app.features.sessions.repository.session_repository import SessionRepository
from app.features.sessions.services.scheduler import SessionJobScheduler
from app.features.sessions.services.session_manager import SessionKeyManager
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.consumer import JobConsumer
from app.infrastructure.queue.jobs import JobName
from app.infrastructure.queue.redis_queue import RedisJobQueue
from app.infrastructure.redis_client import RedisClient

logger = get_logger(__name__)


class ServiceContainer:
    """Owns the lifecycle of the pool, Redis, HTTP clients and the services built on them."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db_pool = DatabasePoolManager(settings)
        self.redis = RedisClient(settings.REDIS_URL)
        self.resolver = BlueskyIdentityResolver(timeout_seconds=settings.RESOLVER_TIMEOUT_SECONDS)
        self.trust_client = (
            TrustedUsersClient(
                settings.TRUSTED_USERS_URL,
                api_key=settings.SERVICE_API_KEY,
                timeout_seconds=settings.SERVICE_REQUEST_TIMEOUT_SECONDS,
            )
            if settings.TRUSTED_USERS_URL
            else None
        )
        self.user_keys_client = (
            UserKeysClient(
                settings.USER_KEYS_URL,
                api_key=settings.SERVICE_API_KEY,
                timeout_seconds=settings.SERVICE_REQUEST_TIMEOUT_SECONDS,
            )
            if settings.USER_KEYS_URL
            else None
        )

        self.session_repository = SessionRepository(self.db_pool)
        self.did_cache_repository = DidCacheRepository(self.db_pool)
        self.session_manager = SessionKeyManager(self.session_repository)

        self.queue: RedisJobQueue | None = None
        self.scheduler: SessionJobScheduler | None = None
        self._started: list[str] = []

    async def start(self, *, create_schema: bool = False) -> None:
        logger.info("Starting services", environment=self.settings.environment)
        try:
            await self.db_pool.initialize()
            self._started.append("database_pool")

            if create_schema:
                await ensure_schema(self.db_pool)

            await self.redis.initialize()
            self._started.append("redis")
            self.queue = RedisJobQueue(self.redis.client, self.settings)
            self.scheduler = SessionJobScheduler(self.queue)

            await self.resolver.open()
            self._started.append("resolver")

            for name, client in (("trusted_users", self.trust_client), ("user_keys", self.user_keys_client)):
                if client is not None:
                    await client.open()
                    self._started.append(name)

            logger.info("All services initialized successfully", services=self._started)

        except Exception as e:
            logger.error("Failed to initialize services", error=str(e), completed_tasks=self._started)
            await self.stop()
            raise

    async def stop(self) -> None:
        closers = {
            "user_keys": lambda: self.user_keys_client.close(),
            "trusted_users": lambda: self.trust_client.close(),
            "resolver": self.resolver.close,
            "redis": self.redis.close,
            "database_pool": self.db_pool.close,
        }
        while self._started:
            name = self._started.pop()
            try:
                await closers[name]()
            except Exception as e:
                logger.error("Error shutting down service", service=name, error=str(e))
        logger.info("Services stopped")

    def build_consumer(self, job_names: list[JobName]) -> JobConsumer:
        """Create a consumer with handlers for the requested job names."""
        if self.queue is None:
            raise RuntimeError("Container not started")

        handlers = {
            JobName.ADD_RECIPIENT_TO_SESSION: lambda: RecipientFanoutHandler(
                self.session_manager,
                key_provider=self.user_keys_client,
                trust_client=self.trust_client,
            ),
            JobName.POPULATE_DID_CACHE: lambda: DidCacheWarmerHandler(
                self.did_cache_repository,
                self.resolver,
                default_host=self.settings.BSKY_DEFAULT_HOST,
            ),
            JobName.UPDATE_SESSION_KEYS: lambda: UpdateSessionKeysHandler(self.session_manager),
            JobName.REVOKE_SESSION: lambda: RevokeSessionHandler(self.session_manager),
            JobName.DELETE_SESSION_KEYS: lambda: DeleteSessionKeysHandler(
                self.session_manager, trust_client=self.trust_client
            ),
        }

        consumer = JobConsumer(
            self.queue,
            concurrency=self.settings.WORKER_CONCURRENCY,
            poll_interval=self.settings.QUEUE_POLL_INTERVAL_SECONDS,
        )
        for name in job_names:
            consumer.register(name, handlers[name]())
        return consumer
