"""Dependency injection for the HTTP layer.

Shared resources live on one ``ServiceManager`` that the application lifespan
creates and stores on ``app.state``; every request gets a lightweight
``RequestContext`` built on top of it.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request

from shortener.config import Settings, get_settings
from shortener.service import URLShorteningService
from shortener.storage.base import URLStorage
from shortener.storage.lifecycle import StorageLifecycle, init_storage
from shortener.tokens import Secretary


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Shared resources for the lifetime of the application.

    Owns the storage lifecycle (store handle, deletion workers, stop signal),
    the owner token codec and the application logger.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.secretary = Secretary(self.settings.SECRET_KEY)
        self.stop_event = asyncio.Event()
        self.lifecycle: Optional[StorageLifecycle] = None

    async def initialize(self, lifecycle: Optional[StorageLifecycle] = None) -> None:
        """Start storage once at startup; a ready ``lifecycle`` may be injected."""
        if self.lifecycle is not None:
            return
        self.lifecycle = lifecycle or await init_storage(self.settings, self.stop_event)
        self.logger.info(f"Storage initialized with {self.settings.storage_backend} backend")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    @property
    def storage(self) -> URLStorage:
        if self.lifecycle is None:
            raise RuntimeError("Service manager not initialized. Call initialize() first.")
        return self.lifecycle.storage

    async def cleanup(self) -> None:
        """Signal shutdown and wait for the deletion pipeline to drain and the store to close."""
        if self.lifecycle is None:
            return
        lifecycle, self.lifecycle = self.lifecycle, None
        try:
            await lifecycle.shutdown()
        except Exception as exc:
            self.logger.error(f"Storage shutdown reported a failure: {exc}")
            raise
        self.logger.info("Storage shut down cleanly")


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view of the shared resources plus request tracking.

    Attributes:
        service_manager: Shared resources for the application
        owner_token: Signed token identifying the calling user
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    owner_token: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def storage(self) -> URLStorage:
        return self.service_manager.storage

    @property
    def lifecycle(self) -> StorageLifecycle:
        return self.service_manager.lifecycle

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.service_manager


def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context; the owner token was resolved by the cookie middleware."""
    return RequestContext(
        service_manager=manager,
        owner_token=request.state.owner_token,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    return URLShorteningService.from_context(ctx)
