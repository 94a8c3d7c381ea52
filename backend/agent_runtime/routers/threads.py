from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from agent_runtime.agent.events import Subscription
from agent_runtime.agent.queue import MessageKind, MessagePriority
from agent_runtime.agent.state import SendResult
from agent_runtime.errors import NotFoundError, ProviderError
from agent_runtime.sessions import SessionManager
from agent_runtime.threads.types import ApprovalDecision

logger = logging.getLogger(__name__)

router = APIRouter(tags=["threads"])


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


class CreateThreadRequest(BaseModel):
    id: str | None = None


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    kind: MessageKind = MessageKind.USER
    priority: MessagePriority = MessagePriority.NORMAL
    wait: bool = False


class CompactRequest(BaseModel):
    retain: int | None = Field(default=None, ge=0)


class ApprovalRequest(BaseModel):
    decision: ApprovalDecision


@router.post("/threads")
async def create_thread(
    body: CreateThreadRequest | None = None,
    sessions: SessionManager = Depends(get_sessions),
):
    thread = await sessions.threads.create_thread(body.id if body else None)
    return thread.to_dict()


@router.get("/threads")
async def list_threads(sessions: SessionManager = Depends(get_sessions)):
    return await sessions.threads.list_threads()


@router.get("/threads/{thread_id}")
async def get_thread(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    thread = await sessions.threads.get_thread(thread_id)
    session = sessions.get(thread_id)
    return {
        "id": thread.id,
        "created_at": thread.created_at.isoformat(),
        "agent": session.to_dict() if session else None,
    }


@router.get("/threads/{thread_id}/events")
async def get_events(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    events = await sessions.threads.get_events(thread_id)
    return [e.to_dict() for e in events]


@router.post("/threads/{thread_id}/compact")
async def compact_thread(
    thread_id: str,
    body: CompactRequest | None = None,
    sessions: SessionManager = Depends(get_sessions),
):
    retain = body.retain if body else None
    session = sessions.get(thread_id)
    if session is not None:
        result = await session.agent.compact(retain)
    else:
        result = await sessions.threads.compact(
            thread_id, sessions.compaction_retain if retain is None else retain
        )
    return {
        "compacted_count": result.compacted_count,
        "bytes_saved": result.bytes_saved,
        "tokens_saved": result.tokens_saved,
        "event": result.event.to_dict() if result.event else None,
    }


@router.post("/threads/{thread_id}/messages")
async def send_message(
    thread_id: str,
    body: SendMessageRequest,
    sessions: SessionManager = Depends(get_sessions),
):
    """Start a turn, or queue the message if the agent is busy.

    With ``wait`` the response is the finished turn's result; otherwise the
    turn keeps running in the background and its progress is visible on the
    events endpoint and the websocket.
    """
    session = await sessions.get_or_create(thread_id)
    if body.wait:
        result = await session.agent.send_message(
            body.content, kind=body.kind, priority=body.priority
        )
        return result.to_dict()

    outcome = session.agent.post_message(body.content, kind=body.kind, priority=body.priority)
    if isinstance(outcome, SendResult):
        return outcome.to_dict()
    return {"status": "started", "message_id": None, "error": None, "metrics": None}


@router.post("/threads/{thread_id}/abort")
async def abort_turn(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    await sessions.threads.get_thread(thread_id)
    session = sessions.get(thread_id)
    aborted = await session.agent.abort() if session else False
    return {"aborted": aborted}


@router.post("/threads/{thread_id}/reset")
async def reset_thread(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    session = sessions.get(thread_id)
    if session is not None:
        await session.agent.reset()
    else:
        await sessions.threads.clear_thread(thread_id)
    return {"ok": True}


@router.get("/threads/{thread_id}/queue")
async def get_queue(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    await sessions.threads.get_thread(thread_id)
    session = sessions.get(thread_id)
    if session is None:
        return {"queue_length": 0, "high_priority_count": 0, "oldest_message_age": None, "messages": []}
    return {
        **session.agent.queue_stats().to_dict(),
        "messages": [m.to_dict() for m in session.agent.queue.contents()],
    }


@router.delete("/threads/{thread_id}/queue")
async def clear_queue(
    thread_id: str,
    include_system: bool = False,
    sessions: SessionManager = Depends(get_sessions),
):
    await sessions.threads.get_thread(thread_id)
    session = sessions.get(thread_id)
    removed = session.agent.clear_queue(include_system=include_system) if session else 0
    return {"removed": removed}


@router.get("/threads/{thread_id}/approvals")
async def list_approvals(thread_id: str, sessions: SessionManager = Depends(get_sessions)):
    await sessions.threads.get_thread(thread_id)
    session = sessions.get(thread_id)
    if session is None:
        return []
    return [p.to_dict() for p in session.approvals.pending()]


@router.post("/threads/{thread_id}/approvals/{request_id}")
async def resolve_approval(
    thread_id: str,
    request_id: str,
    body: ApprovalRequest,
    sessions: SessionManager = Depends(get_sessions),
):
    session = sessions.get(thread_id)
    if session is None:
        raise HTTPException(404, f"No pending approval '{request_id}'")
    session.approvals.resolve(request_id, body.decision)
    return {"ok": True, "decision": body.decision.value}


# ---------------------------------------------------------------------------
# Websocket: notifications out, messages / stop / approvals in
# ---------------------------------------------------------------------------


async def _send(ws: WebSocket, msg_type: str, data: dict | None = None):
    await ws.send_text(json.dumps({"type": msg_type, **(data or {})}))


async def _forward_notifications(ws: WebSocket, subscription: Subscription) -> None:
    async for notification in subscription:
        await ws.send_text(json.dumps(notification.to_dict()))


@router.websocket("/ws/threads/{thread_id}")
async def thread_ws(ws: WebSocket, thread_id: str):
    await ws.accept()

    sessions: SessionManager = ws.app.state.sessions
    try:
        session = await sessions.get_or_create(thread_id)
    except (NotFoundError, ProviderError) as exc:
        await _send(ws, "error", {"message": str(exc)})
        await ws.close()
        return

    subscription = session.channel.subscribe()
    forwarder = asyncio.create_task(_forward_notifications(ws, subscription))
    agent = session.agent

    try:
        while True:
            raw = await ws.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await _send(ws, "error", {"message": "Invalid JSON"})
                continue

            msg_type = payload.get("type", "message")

            if msg_type == "stop":
                aborted = await agent.abort()
                await _send(ws, "stopped", {"aborted": aborted})
                continue

            if msg_type == "approval":
                try:
                    session.approvals.resolve(
                        payload.get("id", ""), ApprovalDecision(payload.get("decision"))
                    )
                except (NotFoundError, ValueError) as exc:
                    await _send(ws, "error", {"message": str(exc)})
                continue

            content = payload.get("message", "")
            if not content.strip():
                continue
            try:
                outcome = agent.post_message(
                    content, priority=payload.get("priority", MessagePriority.NORMAL)
                )
            except ValueError as exc:
                await _send(ws, "error", {"message": str(exc)})
                continue
            if isinstance(outcome, SendResult):
                await _send(ws, "queued", {"message_id": outcome.message_id})

    except WebSocketDisconnect:
        logger.debug("Websocket for thread %s disconnected", thread_id)
    finally:
        forwarder.cancel()
        subscription.close()
