from __future__ import annotations

import importlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, cast
from urllib.parse import urlparse

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from casebook.config import Config
from casebook.core.modules.attachment.storage import BlobStore, S3BlobStore


class Service:
    """Base class for services with direct database access."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        self.database = database
        self._core: Core | None = None

    async def on_start(self) -> None:
        """Initialize service on application startup."""

    async def on_stop(self) -> None:
        """Cleanup service on application shutdown."""

    @property
    def core(self) -> Core:
        """Get the core application context."""
        if self._core is None:
            raise RuntimeError("Core not set for service")
        return self._core

    def set_core(self, core: Core) -> None:
        """Set the core application context."""
        self._core = core


class Services:
    """Service registry that automatically discovers and initializes services."""

    if TYPE_CHECKING:
        from casebook.core.modules.access.service import AccessService
        from casebook.core.modules.attachment.service import AttachmentService
        from casebook.core.modules.comment.service import CommentService
        from casebook.core.modules.defect.service import DefectService
        from casebook.core.modules.project.service import ProjectService
        from casebook.core.modules.sequence.service import SequenceService
        from casebook.core.modules.session.service import SessionService
        from casebook.core.modules.testcase.service import TestCaseService
        from casebook.core.modules.user.service import UserService

    user: UserService
    project: ProjectService
    session: SessionService
    access: AccessService
    sequence: SequenceService
    attachment: AttachmentService
    testcase: TestCaseService
    defect: DefectService
    comment: CommentService

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        """Initialize all services automatically using service configuration."""
        self._services: list[Service] = []
        self._database = database

        # Service configuration: (attribute_name, module_path, class_name)
        # Order matters for initialization - user and project must be first
        service_configs = [
            ("user", "casebook.core.modules.user.service", "UserService"),
            ("project", "casebook.core.modules.project.service", "ProjectService"),
            ("session", "casebook.core.modules.session.service", "SessionService"),
            ("access", "casebook.core.modules.access.service", "AccessService"),
            ("sequence", "casebook.core.modules.sequence.service", "SequenceService"),
            ("attachment", "casebook.core.modules.attachment.service", "AttachmentService"),
            ("testcase", "casebook.core.modules.testcase.service", "TestCaseService"),
            ("defect", "casebook.core.modules.defect.service", "DefectService"),
            ("comment", "casebook.core.modules.comment.service", "CommentService"),
        ]

        # Dynamically import and instantiate services
        for attr_name, module_path, class_name in service_configs:
            module = importlib.import_module(module_path)
            service_class = cast(type[Service], getattr(module, class_name))
            service_instance = service_class(database)
            setattr(self, attr_name, service_instance)
            self._services.append(service_instance)

    def set_core(self, core: Core) -> None:
        """Set core reference for all services."""
        for service in self._services:
            service.set_core(core)

    async def start_all(self) -> None:
        """Start all services that have startup logic."""
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        """Stop all services in reverse start order."""
        for service in reversed(self._services):
            await service.on_stop()


class Core:
    """Container providing config, database, blob store, and all service instances."""

    config: Config
    mongo_client: AsyncMongoClient[dict[str, Any]]
    database: AsyncDatabase[dict[str, Any]]
    blob_store: BlobStore
    services: Services

    def __init__(self, config: Config, blob_store: BlobStore | None = None) -> None:
        """Initialize core with config, MongoDB, object storage, and auto-register services."""
        self.config = config
        # tz_aware: deletion intents compare stored expiry times with aware UTC timestamps
        self.mongo_client = AsyncMongoClient(config.database_url, uuidRepresentation="standard", tz_aware=True)
        self.database = self.mongo_client.get_database(urlparse(config.database_url).path[1:])
        self.blob_store = blob_store if blob_store is not None else S3BlobStore.from_config(config)
        self.services = Services(self.database)
        self.services.set_core(self)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage application lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        """Start all services on application startup."""
        await self.services.start_all()

    async def on_stop(self) -> None:
        """Stop services and close MongoDB connection on shutdown."""
        await self.services.stop_all()
        await self.mongo_client.aclose()
