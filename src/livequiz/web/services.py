"""Service container for the Web API.

One Services instance lives on app.state for the lifetime of the app and
holds the long-lived collaborators: external clients, the ingestion pool,
the broadcast channel and the push coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import HTTPException, Request, status

from livequiz.config.app_config import AppConfig
from livequiz.core.ingestion import IngestionPool
from livequiz.core.push_coordinator import PushCoordinator
from livequiz.llm.client import LLMClient, LLMConfig
from livequiz.llm.extraction import ExtractionClient, OpenAIExtractionClient
from livequiz.web.broadcast import BroadcastChannel

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by all requests."""

    config: AppConfig
    llm: LLMClient
    extractor: ExtractionClient
    pool: IngestionPool
    channel: BroadcastChannel
    pusher: PushCoordinator

    @classmethod
    def build(
        cls,
        config: AppConfig,
        llm: LLMClient | None = None,
        extractor: ExtractionClient | None = None,
    ) -> Services:
        """Wire the container from configuration.

        Args:
            config: Application configuration
            llm: Pre-built generative client (for testing)
            extractor: Pre-built extraction client (for testing)
        """
        generation = config.generation
        if llm is None:
            llm = LLMClient(LLMConfig.from_provider(generation.provider))

        if extractor is None:
            if generation.extraction_provider == generation.provider:
                extraction_llm = llm
            else:
                extraction_llm = LLMClient(LLMConfig.from_provider(generation.extraction_provider))
            extractor = OpenAIExtractionClient(extraction_llm)

        channel = BroadcastChannel(config.broadcast)

        return cls(
            config=config,
            llm=llm,
            extractor=extractor,
            pool=IngestionPool(extractor, config.ingestion),
            channel=channel,
            pusher=PushCoordinator(channel),
        )

    async def shutdown(self) -> None:
        """Close live connections and drain the ingestion pool."""
        closed = self.channel.close_all()
        await self.pool.shutdown()
        logger.info("services.shutdown", subscriptions_closed=closed)


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return services
