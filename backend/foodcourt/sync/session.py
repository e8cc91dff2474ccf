"""
Сессия клиента: агенты, запущенные после входа, и выход из аккаунта.
"""
import inspect
from typing import Optional

from foodcourt.core.logging_config import get_logger
from foodcourt.sync.agents import Agent
from foodcourt.sync.state import NotificationState

logger = get_logger(__name__)


class SyncSession:
    def __init__(self, backend, state: Optional[NotificationState] = None):
        self.backend = backend
        self.state = state
        self.agents: list[Agent] = []

    async def start(self, agent: Agent) -> Agent:
        self.agents.append(agent)
        await agent.mount()
        return agent

    async def logout(self) -> None:
        """Остановить агентов и забыть состояние, которое жило только в памяти."""
        for agent in self.agents:
            agent.unmount()
        self.agents.clear()
        if self.state is not None:
            self.state.clear_session()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result
        logger.info("Сессия клиента завершена")
