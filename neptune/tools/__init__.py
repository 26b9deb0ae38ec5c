from neptune.tools.registry import ToolRegistry, ToolSpec
from neptune.tools.website_tools import (
    ANALYZE_WEBSITE_DESCRIPTION,
    ANALYZE_WEBSITE_TOOL,
    AnalyzeWebsiteArgs,
    analyze_company_website,
)

__all__ = ["ToolRegistry", "ToolSpec", "ANALYZE_WEBSITE_TOOL", "build_default_registry"]


def build_default_registry() -> ToolRegistry:
    """Registry with the tools shipped in this package."""
    registry = ToolRegistry()
    registry.add(
        ToolSpec(
            name=ANALYZE_WEBSITE_TOOL,
            description=ANALYZE_WEBSITE_DESCRIPTION,
            args_model=AnalyzeWebsiteArgs,
            handler=analyze_company_website,
            capabilities=("dashboard", "research", "marketing", "sales"),
        )
    )
    return registry
