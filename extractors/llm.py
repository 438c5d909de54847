from __future__ import annotations

"""Model-backed answer extractor using OpenAI function calling."""

from typing import Any, Dict, List, Mapping, Optional
import json
import logging
import os

from openai import OpenAI

from core.config import DEFAULT_EXTRACTOR_SYSTEM_PROMPT, get_extractor_llm_config, get_prompt
from core.debug_log import dbg
from core.errors import ExtractionFailure
from core.langfuse_tracing import get_langfuse_client, observe
from core.state import ExtractedAnswer, ExtractionResult
from doctypes import DocumentDefinition

logger = logging.getLogger(__name__)

FUNCTION_NAME = "extract_document_fields"


def _tool_schema(field_ids: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": FUNCTION_NAME,
            "description": "Record the document field values stated in the latest user message.",
            "parameters": {
                "type": "object",
                "properties": {
                    "answers": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "field_id": {"type": "string", "enum": field_ids},
                                "value": {"type": "string"},
                                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            },
                            "required": ["field_id", "value", "confidence"],
                        },
                    },
                    "title": {"type": "string", "description": "Working title, if the user gave one."},
                },
                "required": ["answers"],
            },
        },
    }


def _field_context(definition: DocumentDefinition) -> str:
    lines = []
    for f in definition.all_fields:
        marker = "required" if f.required else "optional"
        lines.append(f"- {f.id} ({f.label}, {marker}): {f.description}")
    return "\n".join(lines)


def _existing(dossier: Mapping[str, str]) -> str:
    if not dossier:
        return "(none)"
    return "\n".join(f"- {key}: {value}" for key, value in dossier.items())


def build_system_prompt(definition: DocumentDefinition, dossier: Mapping[str, str]) -> str:
    template = get_prompt("extractor") or DEFAULT_EXTRACTOR_SYSTEM_PROMPT
    return template.format(
        doc_name=definition.name,
        field_context=_field_context(definition),
        existing=_existing(dossier),
    )


def parse_tool_arguments(data: Dict[str, Any], definition: DocumentDefinition) -> ExtractionResult:
    declared = set(definition.field_ids)
    answers: List[ExtractedAnswer] = []
    for item in data.get("answers") or []:
        if not isinstance(item, dict):
            continue
        field_id = item.get("field_id")
        value = str(item.get("value") or "").strip()
        if field_id not in declared or not value:
            continue
        try:
            confidence = float(item.get("confidence", 1.0))
        except (TypeError, ValueError):
            confidence = 1.0
        answers.append(
            ExtractedAnswer(field_id=field_id, value=value, confidence=max(0.0, min(1.0, confidence)))
        )
    title = data.get("title")
    return ExtractionResult(answers=answers, title=title.strip() if isinstance(title, str) and title.strip() else None)


class LLMExtractor:
    """Extract answers with a forced ``extract_document_fields`` tool call."""

    name = "llm"

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None) -> None:
        cfg = get_extractor_llm_config()
        self.model = model or cfg.get("model") or "gpt-4o-mini"
        self.temperature = cfg.get("temperature")
        self.call_kwargs = {k: v for k, v in cfg.items() if k not in {"model", "temperature"}}

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key required for LLM extractor")

    @observe(as_type="generation", name="extract-document-fields")
    def extract(
        self, definition: DocumentDefinition, dossier: Mapping[str, str], text: str
    ) -> ExtractionResult:
        if not (text or "").strip():
            return ExtractionResult()

        system_prompt = build_system_prompt(definition, dossier)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]
        dbg.prompt("extractor.llm", system_prompt, model=self.model, doc_type=definition.id)

        lf_client = get_langfuse_client()
        if lf_client:
            lf_client.update_current_generation(
                model=self.model,
                input={"messages": messages},
                metadata={"component": "answer_extractor", "doc_type": definition.id},
            )

        call_kwargs = dict(self.call_kwargs)
        if self.temperature is not None:
            call_kwargs.setdefault("temperature", self.temperature)

        try:
            client = OpenAI(api_key=self.api_key)
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=[_tool_schema(definition.field_ids)],
                tool_choice={"type": "function", "function": {"name": FUNCTION_NAME}},
                **call_kwargs,
            )
            tool_calls = response.choices[0].message.tool_calls
            if not tool_calls:
                return ExtractionResult()
            data = json.loads(tool_calls[0].function.arguments or "{}")
        except Exception as e:
            logger.warning(f"⚠️ EXTRACTOR: Model call failed: {e}")
            raise ExtractionFailure(f"LLM extraction failed: {e}") from e

        result = parse_tool_arguments(data if isinstance(data, dict) else {}, definition)

        if lf_client:
            usage = getattr(response, "usage", None)
            lf_client.update_current_generation(
                output=result.model_dump(),
                usage_details={
                    "input_tokens": getattr(usage, "prompt_tokens", None),
                    "output_tokens": getattr(usage, "completion_tokens", None),
                    "total_tokens": getattr(usage, "total_tokens", None),
                }
                if usage
                else None,
            )
        return result


__all__ = ["LLMExtractor", "build_system_prompt", "parse_tool_arguments", "FUNCTION_NAME"]
