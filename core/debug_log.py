from __future__ import annotations

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import threading
import json
import os


class DebugLog:
    """Minimal structured debug log for session turns.

    Captures turns, extraction results, surfaced questions, drafts and model
    prompts in memory, grouped by thread id, and can dump them as JSON or text.
    """

    def __init__(self) -> None:
        self._events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self.enabled: bool = False

    # Control -----------------------------------------------------------------
    def enable(self, value: bool = True) -> None:
        self.enabled = value

    def maybe_enable_from_env(self) -> None:
        if self.enabled:
            return
        val = os.getenv("DEBUG_LOG")
        if val and str(val).lower() in {"1", "true", "yes", "on"}:
            self.enabled = True

    def is_enabled(self) -> bool:
        return self.enabled

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    # Recording ---------------------------------------------------------------
    def event(self, name: str, **fields: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._events.append(
                {
                    "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                    "type": "event",
                    "name": name,
                    **self._sanitize(fields),
                }
            )

    def turn(self, thread_id: str, *, status: str, message_id: Optional[str], **meta: Any) -> None:
        self.event("turn", thread_id=thread_id, status=status, message_id=message_id, **meta)

    def extraction(self, thread_id: str, extractor: str, *, count: int, error: Optional[str] = None) -> None:
        self.event("extraction", thread_id=thread_id, extractor=extractor, count=count, error=error)

    def questions(self, thread_id: str, question_ids: List[str]) -> None:
        self.event("questions", thread_id=thread_id, question_ids=list(question_ids))

    def draft(self, thread_id: str, doc_type: str, *, ok: bool, missing: Optional[List[str]] = None) -> None:
        self.event("draft", thread_id=thread_id, doc_type=doc_type, ok=ok, missing=missing or [])

    def prompt(
        self,
        component: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        **meta: Any,
    ) -> None:
        if not self.enabled:
            return
        payload: Dict[str, Any] = {"component": component, "prompt": self._truncate(prompt)}
        if model:
            payload["model"] = model
        payload.update(meta or {})
        self.event("prompt", **payload)

    # Export ------------------------------------------------------------------
    def get_events(self, thread_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if thread_id is None:
            return list(self._events)
        return [e for e in self._events if e.get("thread_id") == thread_id]

    def dump_json(self) -> str:
        return json.dumps(self._events, ensure_ascii=False, indent=2, default=str)

    def dump_text(self) -> str:
        lines: List[str] = []
        for e in self._events:
            meta = {k: v for k, v in e.items() if k not in {"ts", "type", "name"}}
            lines.append(f"[{e['ts']}] {e['name']}: " + json.dumps(meta, ensure_ascii=False, default=str))
        return "\n".join(lines)

    # Helpers -----------------------------------------------------------------
    def _sanitize(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        def scrub(k: str, v: Any) -> Any:
            kl = k.lower()
            if any(token in kl for token in ("api_key", "apikey", "authorization", "secret")):
                return "[redacted]"
            return v
        return {k: scrub(k, v) for k, v in fields.items()}

    def _truncate(self, value: str, limit: int = 2000) -> str:
        if len(value) > limit:
            return value[:limit] + f"... [truncated {len(value) - limit} chars]"
        return value


# Global singleton
dbg = DebugLog()


__all__ = ["dbg", "DebugLog"]
