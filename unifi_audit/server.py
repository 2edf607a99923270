"""HTTP API for the audit tools.

Exposes the tool registry: a manifest of registered tools and an execute
endpoint per tool.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from . import __version__
from . import tools  # noqa: F401
from .logging_config import get_logger
from .tool_registry import get_registry

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    version: str


class ToolExecutionResponse(BaseModel):
    """Response for tool execution."""
    success: bool
    result: Dict[str, Any] = {}
    error: str = ""


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="UniFi Security Audit",
        description="Security audit and compliance scoring for UniFi networks",
        version=__version__,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(status="healthy", version=__version__)

    @app.get("/api/tools")
    async def list_tools(tag: Optional[str] = None):
        """List the available tools with their schemas, optionally only those carrying ``tag``."""
        return get_registry().get_manifest(tag)

    @app.post("/api/tools/{tool_name}/execute", response_model=ToolExecutionResponse)
    async def execute_tool(tool_name: str, request: Dict[str, Any]) -> ToolExecutionResponse:
        """Execute a specific tool.

        Raises:
            HTTPException: 404 if the tool is unknown, 400 on invalid parameters
        """
        registry = get_registry()
        if registry.get(tool_name) is None:
            logger.warning(f"Tool not found: {tool_name}")
            raise HTTPException(status_code=404, detail=f"Tool '{tool_name}' not found")

        try:
            logger.info(f"Executing tool: {tool_name}")
            result = await registry.execute(tool_name, request)
            return ToolExecutionResponse(success=True, result=result)
        except ValidationError as e:
            logger.warning(f"Validation error for tool {tool_name}: {e}")
            raise HTTPException(status_code=400, detail=f"Invalid parameters: {e}")
        except Exception as e:
            logger.error(f"Tool execution failed: {tool_name}", exc_info=True)
            return ToolExecutionResponse(success=False, error=str(e))

    return app


app = create_app()
