"""
Tools API Routes.

Endpoints for listing the tools that tool nodes can call.
"""

from fastapi import APIRouter, HTTPException
import logging

from flowexec.api.schemas import (
    ErrorResponse,
    ToolInfo,
    ToolListResponse,
)
from flowexec.tools.registry import tool_registry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tools", tags=["Tools"])


@router.get(
    "",
    response_model=ToolListResponse,
)
async def list_tools() -> ToolListResponse:
    """
    List all registered tools.

    Tool nodes reference these by name in ``config.tool``.
    """
    tool_infos = [
        ToolInfo(
            name=t["name"],
            description=t["description"],
            parameters=t["parameters"],
            is_async=t["isAsync"],
        )
        for t in tool_registry.list_tools()
    ]

    return ToolListResponse(tools=tool_infos, total=len(tool_infos))


@router.get(
    "/{tool_name}",
    response_model=ToolInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_tool(tool_name: str) -> ToolInfo:
    """Get information about a specific tool."""
    tool = tool_registry.get(tool_name)
    if not tool:
        raise HTTPException(
            status_code=404,
            detail=f"Tool '{tool_name}' not found"
        )

    return ToolInfo(
        name=tool.name,
        description=tool.description,
        parameters=tool.parameters,
        is_async=tool.is_async,
    )
