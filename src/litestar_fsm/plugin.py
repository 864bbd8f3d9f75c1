"""Litestar plugin for state machine integration.

This module provides the FSMPlugin, which wires a transition engine into a
Litestar application: dependency injection, REST endpoints, error mapping and
the timeout sweeper's lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_fsm.config import FSMConfig
from litestar_fsm.db.store import DefinitionStore
from litestar_fsm.engine.transition import TransitionEngine
from litestar_fsm.sweeper import TimeoutSweeper

if TYPE_CHECKING:
    from litestar.config.app import AppConfig
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_fsm.conditions import ConditionEvaluator
    from litestar_fsm.core.protocols import Notifier

__all__ = ["FSMPlugin", "FSMPluginConfig"]


@dataclass
class FSMPluginConfig:
    """Configuration for the FSMPlugin.

    Attributes:
        session_maker: Session factory used to build the engine when no
            ``engine`` is given.
        engine: Optional pre-configured TransitionEngine.
        fsm_config: Engine configuration used when building the engine.
        evaluator: Optional condition evaluator used when building the engine.
        notifier: Optional notifier used when building the engine.
        dependency_key_engine: The key used for dependency injection of the
            TransitionEngine. Defaults to "fsm_engine".
        dependency_key_definitions: The key used for dependency injection of
            the DefinitionStore. Defaults to "fsm_definitions".
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all API endpoints. Defaults to "/fsm".
        api_guards: List of Litestar guards to apply to all API endpoints.
        api_tags: OpenAPI tags to apply to API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
        run_sweeper: Whether to run the timeout sweeper while the app is up.
    """

    session_maker: async_sessionmaker[AsyncSession] | None = None
    engine: TransitionEngine | None = None
    fsm_config: FSMConfig = field(default_factory=FSMConfig)
    evaluator: ConditionEvaluator | None = None
    notifier: Notifier | None = None
    dependency_key_engine: str = "fsm_engine"
    dependency_key_definitions: str = "fsm_definitions"
    enable_api: bool = True
    api_path_prefix: str = "/fsm"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["State Machine"])
    include_api_in_schema: bool = True
    run_sweeper: bool = True


class FSMPlugin(InitPluginProtocol):
    """Litestar plugin for state machine management.

    Example:
        Basic usage::

            from litestar import Litestar
            from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
            from litestar_fsm import FSMPlugin, FSMPluginConfig

            db = create_async_engine("postgresql+asyncpg://localhost/app")
            app = Litestar(
                plugins=[
                    FSMPlugin(
                        config=FSMPluginConfig(
                            session_maker=async_sessionmaker(db, expire_on_commit=False),
                        )
                    )
                ]
            )

        Using in a route handler::

            @post("/documents/{entity_id:uuid}/submit")
            async def submit(entity_id: UUID, fsm_engine: TransitionEngine) -> dict:
                record = await fsm_engine.execute(entity_id, "submit", "alice")
                return {"sequence": record.sequence}
    """

    __slots__ = ("_config", "_engine", "_sweeper")

    def __init__(self, config: FSMPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or FSMPluginConfig()
        self._engine: TransitionEngine | None = None
        self._sweeper: TimeoutSweeper | None = None

    @property
    def engine(self) -> TransitionEngine:
        """Get the transition engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "FSMPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    @property
    def sweeper(self) -> TimeoutSweeper | None:
        """The timeout sweeper, when enabled."""
        return self._sweeper

    def _build_engine(self) -> TransitionEngine:
        if self._config.engine is not None:
            return self._config.engine
        if self._config.session_maker is None:
            msg = "FSMPluginConfig needs either an engine or a session_maker"
            raise ValueError(msg)
        fsm_config = self._config.fsm_config
        definitions = DefinitionStore(
            self._config.session_maker,
            strict_auto_transitions=fsm_config.strict_auto_transition_ambiguity,
        )
        return TransitionEngine(
            self._config.session_maker,
            definitions,
            evaluator=self._config.evaluator,
            notifier=self._config.notifier,
            config=fsm_config,
        )

    async def _on_startup(self) -> None:
        if self._sweeper is not None:
            self._sweeper.start()

    async def _on_shutdown(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.stop()
        if self._engine is not None:
            await self._engine.drain()

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided TransitionEngine
        2. Adds dependency providers for the engine and definition store
        3. Optionally registers REST API controllers and the error handler
        4. Hooks the timeout sweeper and notification drain into the app lifecycle

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        self._engine = self._build_engine()
        if self._config.run_sweeper:
            self._sweeper = TimeoutSweeper(self._engine)

        def provide_engine() -> TransitionEngine:
            return self._engine  # type: ignore[return-value]

        def provide_definitions() -> DefinitionStore:
            return self._engine.definitions  # type: ignore[union-attr]

        app_config.dependencies[self._config.dependency_key_engine] = Provide(
            provide_engine,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_definitions] = Provide(
            provide_definitions,
            sync_to_thread=False,
        )

        if self._config.enable_api:
            from litestar import Router

            from litestar_fsm.exceptions import FSMError
            from litestar_fsm.web.controllers import WorkflowDefinitionController, WorkflowEntityController
            from litestar_fsm.web.exceptions import fsm_error_handler

            fsm_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[WorkflowEntityController, WorkflowDefinitionController],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(fsm_router)
            app_config.exception_handlers[FSMError] = fsm_error_handler  # type: ignore[assignment]

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)
        return app_config
