"""Human checkpoint node: pauses the execution until someone responds."""

from typing import Any, Dict, List, Optional
import logging

from flowexec.config import settings
from flowexec.engine.expressions import render, resolve_path
from flowexec.engine.state import Checkpoint, utcnow
from flowexec.errors import CheckpointResponseError
from flowexec.nodes.base import NodeContext, NodePause, NodeResult


logger = logging.getLogger(__name__)


def normalize_options(options: List[Any]) -> List[Dict[str, Any]]:
    normalized = []
    for option in options or []:
        if isinstance(option, dict):
            value = str(option.get("value", option.get("branch", "")))
            entry = {"value": value, "label": option.get("label", value)}
            if option.get("description"):
                entry["description"] = option["description"]
            if option.get("style"):
                entry["style"] = option["style"]
        else:
            entry = {"value": str(option), "label": str(option)}
        normalized.append(entry)
    return normalized


class HumanExecutor:
    """
    Never completes on its own: ``execute`` always returns a NodePause,
    and ``resolve`` turns a validated human response into the result.

    Config:
        message: templated prompt shown to the reviewer
        options: ``[{value, label, description?}]`` allowed branches
        inputSchema: ``{required: [...]}`` fields expected in ``data``
        showData: paths whose values are shown with the checkpoint
        timeout: seconds until the checkpoint expires (CHECKPOINT_TTL)
        defaultBranch: branch chosen automatically on expiry
    """

    async def execute(self, ctx: NodeContext) -> NodePause:
        config = ctx.config
        message = render(config.get("message", ""), ctx.bindings)

        display_data = {
            path: resolve_path(ctx.bindings, path)
            for path in config.get("showData") or []
        }

        timeout = config.get("timeout", settings.CHECKPOINT_TTL)
        return NodePause(
            message="" if message is None else str(message),
            options=normalize_options(config.get("options")),
            input_schema=config.get("inputSchema"),
            display_data=display_data,
            timeout=float(timeout) if timeout else None,
            default_branch=config.get("defaultBranch"),
        )

    def resolve(
        self,
        checkpoint: Checkpoint,
        branch: Optional[str],
        data: Optional[Dict[str, Any]] = None,
    ) -> NodeResult:
        """
        Validate a response against the checkpoint and build the node result.

        Raises:
            CheckpointResponseError: If the branch is not one of the options
                or required input fields are missing
        """
        if branch is None or str(branch) == "":
            raise CheckpointResponseError("A branch must be chosen to resume the checkpoint")
        branch = str(branch)
        data = data or {}

        allowed = [option["value"] for option in checkpoint.options]
        if allowed and branch not in allowed:
            raise CheckpointResponseError(
                f"Branch '{branch}' is not an option of checkpoint '{checkpoint.node_id}' "
                f"(expected one of {allowed})"
            )

        required = (checkpoint.input_schema or {}).get("required") or []
        missing = [name for name in required if data.get(name) in (None, "")]
        if missing:
            raise CheckpointResponseError(f"Missing required fields: {', '.join(missing)}")

        logger.debug(f"Checkpoint '{checkpoint.id}' resolved with branch '{branch}'")
        return NodeResult(
            output={
                "branch": branch,
                "data": data,
                "respondedAt": utcnow().isoformat(),
            },
            branch=branch,
        )
