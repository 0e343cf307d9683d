"""Deterministic reply text when the model cannot produce a final answer."""

from __future__ import annotations

from hatchery_chat.types import ToolResult

NO_DATA_APOLOGY = (
    "I'm experiencing technical difficulties connecting to the AI service, but your "
    "request was received. Please try again in a moment."
)
DEGRADED_NOTE = (
    "Note: I'm experiencing issues with my AI processing, so this is a basic "
    "summary of your data."
)


def build_fallback_summary(tool_results: list[ToolResult]) -> str:
    """Summarize tool payloads without any model involvement.

    One bullet per tool result, taken from the first of: its `message`, its
    `count`, its batch listing, its `error`, or the number of properties it
    carries.
    """
    if not tool_results:
        return NO_DATA_APOLOGY

    lines = ["I found some information for you:", ""]
    for result in tool_results:
        data = result.payload
        if data.get("message"):
            lines.append(f"• {data['message']}")
        elif data.get("count") is not None:
            lines.append(f"• Found {data['count']} records")
        elif isinstance(data.get("batches"), list):
            batches = data["batches"]
            lines.append(f"• {len(batches)} batches found")
            if batches:
                latest = batches[0].get("batch_number") or batches[0].get("id")
                lines.append(f"  - Latest: {latest}")
        elif data.get("error"):
            lines.append(f"• {data['error']}")
        elif data:
            lines.append(f"• Retrieved data with {len(data)} properties")
    lines.extend(["", DEGRADED_NOTE])
    return "\n".join(lines)
