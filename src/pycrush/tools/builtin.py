from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.ls_tool import LsTool
from .builtin_tools.glob_tool import GlobTool
from .builtin_tools.grep_tool import GrepTool
from .builtin_tools.view_tool import ViewTool
from .builtin_tools.write_tool import WriteTool
from .builtin_tools.bash_tool import BashTool
from .builtin_tools.journal_tool import JournalTool
from .builtin_tools.agent_tool import AgentTool

def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    registry.register(LsTool())
    registry.register(GlobTool())
    registry.register(GrepTool())
    registry.register(ViewTool())
    registry.register(WriteTool())
    registry.register(BashTool())
    registry.register(JournalTool())
    registry.register(AgentTool())
    return registry
