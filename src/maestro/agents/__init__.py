from maestro.agents.catalog import (
    CORE_AGENTS,
    PHASE_ORDER,
    SPECIALIST_AGENTS,
    AgentCatalog,
    AgentDescriptor,
)
from maestro.agents.router import TASK_PHASES, AgentRouter, TierLimit

__all__ = [
    "CORE_AGENTS",
    "PHASE_ORDER",
    "SPECIALIST_AGENTS",
    "TASK_PHASES",
    "AgentCatalog",
    "AgentDescriptor",
    "AgentRouter",
    "TierLimit",
]
