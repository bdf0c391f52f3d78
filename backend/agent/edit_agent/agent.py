from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable

from openai import OpenAI
from sqlalchemy.orm import Session

from operators.asset_operator import get_asset_infos
from operators.composition_operator import (
    CompositionNotFoundError,
    get_composition,
    to_document,
)

from .prompts import build_system_prompt
from .tools import COMPOSITION_TOOLS, execute_tool
from .types import EditAgentResult, EditRequest, LoopState, ToolCallRecord

logger = logging.getLogger(__name__)

MODEL = os.getenv("EDIT_AGENT_MODEL", "google/gemini-2.5-flash")
MAX_ITERATIONS = int(os.getenv("EDIT_AGENT_MAX_ITERATIONS", "3"))
LOG_PAYLOADS = os.getenv("EDIT_AGENT_LOG_PAYLOADS", "").lower() in {"1", "true", "yes"}
LOG_MAX_CHARS = int(os.getenv("EDIT_AGENT_LOG_MAX_CHARS", "2000"))

ToolExecutor = Callable[[str, dict[str, Any], str, Session], dict[str, Any]]


def build_client() -> OpenAI:
    return OpenAI(
        base_url="https://openrouter.ai/api/v1",
        api_key=os.getenv("OPENROUTER_API_KEY", ""),
    )


def _assistant_message(message: Any) -> dict[str, Any]:
    assistant_msg: dict[str, Any] = {"role": "assistant", "content": message.content}
    if message.tool_calls:
        assistant_msg["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.function.name,
                    "arguments": tc.function.arguments,
                },
            }
            for tc in message.tool_calls
        ]
    return assistant_msg


def _history_messages(history: list[dict[str, str]]) -> list[dict[str, str]]:
    return [
        {"role": msg["role"], "content": msg["content"]}
        for msg in history
        if msg.get("role") in {"user", "assistant"} and msg.get("content")
    ]


def _disambiguation_reply(options: list[dict[str, Any]]) -> str:
    lines = ["Several elements match. Which one did you mean?"]
    for number, option in enumerate(options, start=1):
        lines.append(f"{number}. {option.get('label')} ({option.get('description')})")
    return "\n".join(lines)


class EditAgent:
    """
    Bounded tool loop over a chat model.

    The loop is a small state machine:
    AWAITING_PROPOSAL asks the model for its next move, EXECUTING runs the
    proposed tool calls one after another, FINISHED ends the turn. Each model
    request consumes one unit of the iteration budget; running out of budget
    while the model still wants to act ends the turn with budget_exhausted.
    A tool result that needs disambiguation also ends the turn so the user
    can choose.
    """

    def __init__(
        self,
        client: Any,
        model: str = MODEL,
        max_iterations: int = MAX_ITERATIONS,
        tool_executor: ToolExecutor = execute_tool,
        tools: list[dict[str, Any]] | None = None,
    ):
        self.client = client
        self.model = model
        self.max_iterations = max(1, max_iterations)
        self.tool_executor = tool_executor
        self.tools = tools if tools is not None else COMPOSITION_TOOLS

    def run(self, db: Session, composition_id: str, request: EditRequest) -> EditAgentResult:
        composition = get_composition(db, composition_id)
        if not composition:
            raise CompositionNotFoundError(composition_id=composition_id)

        document = to_document(composition)
        assets = list(get_asset_infos(db, composition.project_id).values())

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(document, assets)}
        ]
        messages.extend(_history_messages(request.history))
        messages.append({"role": "user", "content": request.message})
        _log_payload("user_message", request.message)

        state = LoopState.AWAITING_PROPOSAL
        iterations = 0
        budget_exhausted = False
        reply = ""
        pending_calls: list[Any] = []
        records: list[ToolCallRecord] = []
        receipts: list[str] = []
        warnings: list[str] = []
        options: list[dict[str, Any]] = []

        while state != LoopState.FINISHED:
            if state == LoopState.AWAITING_PROPOSAL:
                if iterations >= self.max_iterations:
                    logger.warning("Edit agent iteration budget of %s reached", self.max_iterations)
                    budget_exhausted = True
                    state = LoopState.FINISHED
                    continue

                iterations += 1
                logger.debug("Edit agent iteration %s", iterations)
                try:
                    response = self.client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        tools=self.tools,
                        tool_choice="auto",
                    )
                except Exception as exc:
                    logger.error(f"Chat completion error: {exc}")
                    warnings.append(f"Model request failed: {exc}")
                    state = LoopState.FINISHED
                    continue

                message = response.choices[0].message
                reply = message.content or reply
                _log_payload("assistant_message", message.content or "")
                messages.append(_assistant_message(message))

                pending_calls = list(message.tool_calls or [])
                state = LoopState.EXECUTING if pending_calls else LoopState.FINISHED

            elif state == LoopState.EXECUTING:
                for tool_call in pending_calls:
                    tool_name = tool_call.function.name
                    try:
                        tool_args = json.loads(tool_call.function.arguments or "{}")
                    except json.JSONDecodeError:
                        tool_args = None

                    if isinstance(tool_args, dict):
                        result = self.tool_executor(tool_name, tool_args, composition_id, db)
                    else:
                        tool_args = {}
                        result = {
                            "success": False,
                            "error": "Tool arguments were not a valid JSON object",
                            "error_code": "INVALID_ARGUMENTS",
                        }

                    _log_payload("tool_call", {"name": tool_name, "arguments": tool_args, "result": result})
                    records.append(
                        ToolCallRecord(
                            iteration=iterations,
                            tool=tool_name,
                            arguments=tool_args,
                            result=result,
                        )
                    )

                    if result.get("success") and result.get("receipt"):
                        receipts.append(result["receipt"])
                    warnings.extend(result.get("warnings") or [])
                    if result.get("needs_disambiguation"):
                        options = list(result.get("options") or [])
                    elif result.get("error"):
                        warnings.append(f"{tool_name}: {result['error']}")

                    messages.append({
                        "role": "tool",
                        "tool_call_id": tool_call.id,
                        "content": json.dumps(result, default=str),
                    })

                pending_calls = []
                state = LoopState.FINISHED if options else LoopState.AWAITING_PROPOSAL

        if options:
            reply = _disambiguation_reply(options)
        elif not reply:
            reply = "; ".join(receipts) if receipts else "No changes were made."

        db.refresh(composition)
        return EditAgentResult(
            message=reply,
            receipts=receipts,
            warnings=warnings,
            tool_calls=records,
            needs_disambiguation=bool(options),
            disambiguation_options=options,
            iterations=iterations,
            budget_exhausted=budget_exhausted,
            new_version=composition.version,
        )


def _log_payload(label: str, payload: Any) -> None:
    if not LOG_PAYLOADS:
        return
    if isinstance(payload, str):
        message = payload
    else:
        try:
            message = json.dumps(payload, default=str, ensure_ascii=True)
        except TypeError:
            message = str(payload)
    if LOG_MAX_CHARS > 0 and len(message) > LOG_MAX_CHARS:
        message = f"{message[:LOG_MAX_CHARS]}... [truncated]"
    logger.info("Edit agent %s: %s", label, message)
