from __future__ import annotations

import json
import logging
import re
from typing import List, Optional, Sequence

from groupflow.schemas.messages import (
    AggregateMessage,
    FunctionContract,
    Message,
    Role,
    TextMessage,
    ToolCall,
)

logger = logging.getLogger(__name__)

BEGIN = "<|begin_of_text|>"
EOT = "<|eot_id|>"

FUNCTION_BLOCK_RE = re.compile(r"```[^`\n]*\n([\s\S]*?)\n```")

FUNCTION_INSTRUCTIONS = (
    "If you can, use one of the available functions listed in the <functions> tag. "
    "Each function is a JSON payload with a name and a description which indicates when to use the tool.\n"
    "<functions>\n{functions}</functions>\n"
    "If you need to use one of the functions then wrap it into a Markdown code block named "
    "'function' and only reply with the JSON payload of the function call.\n"
    "This is an example of a function code block:\n"
    '``` function\n{{"name": "FunctionToCall", "arguments": "{{\\"ParameterName\\": \\"ParameterValue\\"}}"}}\n```'
)


def _header(speaker: str) -> str:
    return f"<|start_header_id|>{speaker}<|end_header_id|>"


def _render_turn(message: Message) -> Optional[str]:
    if isinstance(message, TextMessage):
        if message.role is Role.SYSTEM:
            return None
        return f"{_header(message.from_ or 'user')}{message.content}{EOT}"
    if isinstance(message, AggregateMessage):
        call = message.call.calls[0] if message.call.calls else None
        result = message.result.results[0].result if message.result.results else ""
        name = call.function_name if call else "unknown"
        return f"{_header(message.from_)}Executed tool to {name} with a result of: {result}{EOT}"
    return None


def build_llama3_prompt(
    messages: Sequence[Message],
    system_message: str,
    functions: Optional[Sequence[FunctionContract]] = None,
) -> str:
    """Render history as a Llama-3 chat prompt ending on the assistant header.

    A system message found in the history wins over ``system_message``.
    Tool call requests and bare results are skipped; only paired results
    (aggregates) are shown to the model.
    """
    system = next(
        (m.content for m in messages if isinstance(m, TextMessage) and m.role is Role.SYSTEM),
        system_message,
    )
    if functions:
        definitions = "".join(
            json.dumps({"name": f.name, "description": f.description, "parameters": f.parameters})
            + "\n"
            for f in functions
        )
        system = f"{system}\n{FUNCTION_INSTRUCTIONS.format(functions=definitions)}"
    turns = [t for t in (_render_turn(m) for m in messages) if t is not None]
    return f"{BEGIN}{_header('system')}\n{system}{EOT}\n" + "\n".join(turns) + _header("assistant")


def extract_function_calls(text: str, functions: Sequence[FunctionContract]) -> List[ToolCall]:
    """Pull ``{"name", "arguments"}`` payloads out of fenced blocks.

    Blocks that are not JSON or name a function outside ``functions`` are ignored.
    """
    allowed = {f.name for f in functions}
    calls: List[ToolCall] = []
    for match in FUNCTION_BLOCK_RE.finditer(text):
        try:
            payload = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON code block in model output")
            continue
        if not isinstance(payload, dict) or payload.get("name") not in allowed:
            continue
        arguments = payload.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(ToolCall(function_name=payload["name"], arguments_json=arguments))
    return calls
