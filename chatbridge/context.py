"""AppContext: wires DB, config, tab host and services together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatbridge.config import AppConfig, load_config
from chatbridge.infra.db.client import MongoClient
from chatbridge.models.conversation import ConversationSession

if TYPE_CHECKING:
    from pathlib import Path

    from chatbridge.infra.browser.base import TabHost
    from chatbridge.infra.db.events import EventRepo
    from chatbridge.infra.db.state_store import StateStore
    from chatbridge.services.conversation_controller import ConversationController
    from chatbridge.services.participant_registry import ParticipantRegistry
    from chatbridge.services.tab_activation import TabActivationController
    from chatbridge.services.timeout_learner import TimeoutProfileLearner

logger = logging.getLogger(__name__)


class AppContext:
    """Central wiring for all application dependencies.

    Lazily builds services on first access. Call ``initialize()`` to connect
    to MongoDB, then ``controller.load()`` to restore the session.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        config_path: Path | None = None,
        host: TabHost | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self._mongo: MongoClient | None = None
        self._host = host
        self._store: StateStore | None = None
        self._event_repo: EventRepo | None = None
        self._session: ConversationSession | None = None
        self._learner: TimeoutProfileLearner | None = None
        self._registry: ParticipantRegistry | None = None
        self._activation: TabActivationController | None = None
        self._controller: ConversationController | None = None

    async def initialize(self) -> None:
        """Initialize the database connection and run migrations."""
        from chatbridge.infra.db.migrations import run_migrations

        self._mongo = MongoClient(
            uri=self.config.mongodb.uri,
            database=self.config.mongodb.database,
        )
        await run_migrations(self._mongo.db)
        logger.info("AppContext initialized")

    async def close(self) -> None:
        if self._controller is not None:
            await self._controller.shutdown()
        stop_host = getattr(self._host, "stop", None)
        if stop_host is not None:
            await stop_host()
        if self._mongo:
            self._mongo.close()
        logger.info("AppContext closed")

    @property
    def mongo(self) -> MongoClient:
        if self._mongo is None:
            raise RuntimeError("AppContext not initialized. Call initialize() first.")
        return self._mongo

    @property
    def host(self) -> TabHost:
        if self._host is None:
            from chatbridge.infra.browser.playwright_host import PlaywrightTabHost

            self._host = PlaywrightTabHost(self.config)
        return self._host

    @property
    def store(self) -> StateStore:
        if self._store is None:
            from chatbridge.infra.db.state_store import StateStore

            self._store = StateStore(self.mongo.db)
        return self._store

    @property
    def event_repo(self) -> EventRepo:
        if self._event_repo is None:
            from chatbridge.infra.db.events import EventRepo

            self._event_repo = EventRepo(self.mongo.db)
        return self._event_repo

    @property
    def session(self) -> ConversationSession:
        if self._session is None:
            self._session = ConversationSession(config=self.config.conversation)
        return self._session

    @property
    def learner(self) -> TimeoutProfileLearner:
        if self._learner is None:
            from chatbridge.services.timeout_learner import TimeoutProfileLearner

            self._learner = TimeoutProfileLearner(
                self.store, self.config.conversation, self.config.orchestrator,
            )
        return self._learner

    @property
    def registry(self) -> ParticipantRegistry:
        if self._registry is None:
            from chatbridge.services.participant_registry import ParticipantRegistry

            self._registry = ParticipantRegistry(self.store, self.host, self.session)
        return self._registry

    @property
    def activation(self) -> TabActivationController:
        if self._activation is None:
            from chatbridge.services.tab_activation import TabActivationController

            self._activation = TabActivationController(
                self.host, self.learner, self.config.orchestrator, self.event_repo,
            )
        return self._activation

    @property
    def controller(self) -> ConversationController:
        if self._controller is None:
            from chatbridge.services.conversation_controller import ConversationController

            self._controller = ConversationController(
                store=self.store,
                host=self.host,
                session=self.session,
                registry=self.registry,
                activation=self.activation,
                learner=self.learner,
                orchestrator=self.config.orchestrator,
                event_repo=self.event_repo,
            )
            self._bind_host_handlers(self._controller)
        return self._controller

    def _bind_host_handlers(self, controller: ConversationController) -> None:
        set_handlers = getattr(self.host, "set_handlers", None)
        if set_handlers is None:
            return

        async def _registered(tab_handle: str, platform_id: str) -> None:
            tab = await self.host.get_tab(tab_handle)
            await controller.register_agent(tab_handle, platform_id, tab.title if tab else "")

        set_handlers(
            on_response=controller.on_tab_response,
            on_closed=controller.on_tab_closed,
            on_registered=_registered,
        )
