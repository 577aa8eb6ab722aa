# routers/assistant.py — Conversational assistant with short per-user memory
import os
import logging
from typing import Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from responses import CamelModel, ok
from session_store import ConversationStore, get_conversation_store

logger = logging.getLogger("tracklane.assistant")

router = APIRouter(prefix="/api/v1/assistant", tags=["Assistant"])

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
ASSISTANT_MODEL = os.getenv("ASSISTANT_MODEL", "claude-3-5-haiku-latest")

SYSTEM_PROMPT = (
    "You are the Tracklane assistant. Help team members plan tasks, log time "
    "and understand review feedback. Keep answers short and practical."
)


class ChatIn(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)
    context: Optional[str] = Field(None, max_length=4000)


async def _call_llm(messages: List[Dict[str, str]], context: Optional[str] = None) -> str:
    """Anthropic Messages API call. Without a key, or on failure, answer with a stub."""
    prompt = messages[-1]["content"]
    if not ANTHROPIC_API_KEY:
        return f"[Stub] Received: {prompt[:200]}"

    system = SYSTEM_PROMPT if not context else f"{SYSTEM_PROMPT}\n\nContext: {context}"
    try:
        async with httpx.AsyncClient(timeout=60) as client:
            resp = await client.post(
                f"{ANTHROPIC_BASE_URL}/messages",
                headers={
                    "x-api-key": ANTHROPIC_API_KEY,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={"model": ASSISTANT_MODEL, "max_tokens": 1024, "system": system, "messages": messages},
            )
            resp.raise_for_status()
            payload = resp.json()
            blocks = (payload.get("content") if isinstance(payload, dict) else None) or []
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Assistant call failed ({ASSISTANT_MODEL}): {e}")
        return f"[Fallback] Received: {prompt[:200]}"

    text = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text")
    if not text:
        logger.warning(f"Assistant returned no text content ({ASSISTANT_MODEL})")
        return f"[Fallback] Received: {prompt[:200]}"
    return text


@router.post("/chat")
async def chat(
    data: ChatIn,
    user: CurrentUser = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    history = store.get(user.id)
    messages = history + [{"role": "user", "content": data.message}]
    reply = await _call_llm(messages, data.context)
    store.append(user.id, {"role": "user", "content": data.message}, {"role": "assistant", "content": reply})
    return ok({"response": reply})


@router.delete("/history")
async def clear_history(
    user: CurrentUser = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    store.clear(user.id)
    return ok(message="Conversation history cleared")
