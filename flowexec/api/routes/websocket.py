"""
WebSocket Routes for Real-time Execution Streaming.

The same event stream as the SSE endpoint, plus a control channel: the
client can answer the pending checkpoint or cancel the execution over
the same connection.
"""

from typing import Any, Dict
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from flowexec.engine.orchestrator import execution_engine
from flowexec.errors import ExecutionNotFound, WorkflowEngineError
from flowexec.events.publisher import Subscription


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


@router.websocket("/ws/executions/{execution_id}")
async def websocket_execution(websocket: WebSocket, execution_id: str):
    """
    WebSocket endpoint for following (and steering) an execution.

    Message format (server -> client), one per event:
    ```json
    {"id": 3, "type": "node_complete", "executionId": "...", "timestamp": "...", "data": {...}}
    ```

    Message format (client -> server):
    ```json
    {"action": "resume", "branch": "approve", "data": {"comment": "LGTM"}}
    {"action": "cancel"}
    ```

    The connection is closed by the server once the execution has
    reached a terminal status.
    """
    try:
        instance = await execution_engine.get(execution_id)
    except ExecutionNotFound:
        await websocket.close(code=4004, reason=f"Execution '{execution_id}' not found")
        return

    await websocket.accept()
    publisher = execution_engine.publisher
    subscription = publisher.subscribe(execution_id, instance.snapshot(), finished=instance.is_terminal)
    logger.info(f"WebSocket connected for execution: {execution_id}")

    sender = asyncio.create_task(_send_events(websocket, subscription))
    receiver = asyncio.create_task(_receive_commands(websocket, execution_id))

    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"WebSocket error for execution {execution_id}: {error}")
        if sender in done:
            await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        publisher.unsubscribe(subscription)
        logger.info(f"WebSocket disconnected for execution: {execution_id}")


async def _send_events(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_dict())


async def _receive_commands(websocket: WebSocket, execution_id: str) -> None:
    while True:
        message: Dict[str, Any] = await websocket.receive_json()
        action = message.get("action")
        try:
            if action == "resume":
                await execution_engine.resume(
                    execution_id,
                    message.get("branch"),
                    message.get("data"),
                    checkpoint_id=message.get("checkpointId"),
                )
            elif action == "cancel":
                await execution_engine.cancel(execution_id)
            else:
                await websocket.send_json({
                    "type": "error",
                    "error": f"Unknown action '{action}'",
                })
        except WorkflowEngineError as e:
            await websocket.send_json({
                "type": "error",
                "error": e.code,
                "detail": str(e),
            })
