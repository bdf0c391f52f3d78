from .agent import EditAgent, build_client
from .tools import COMPOSITION_TOOLS, execute_tool
from .types import EditAgentResult, EditRequest, LoopState

__all__ = [
    "COMPOSITION_TOOLS",
    "EditAgent",
    "EditAgentResult",
    "EditRequest",
    "LoopState",
    "build_client",
    "execute_tool",
]
