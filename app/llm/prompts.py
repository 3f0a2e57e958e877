"""
Prompt template for the technician internal note written from similar
historical tickets.
"""

from app.models.ticket_models import Match

NOTE_SYSTEM = (
    "You are a senior MSP technician. Write short, structured internal "
    "notes for ConnectWise tickets."
)

NOTE_INSTRUCTIONS = """\
Write a ConnectWise internal note including:
- Likely root cause
- 2–4 troubleshooting steps
- References to matched ticket numbers
- Keep it concise (5–8 lines max)
"""


def build_internal_note_prompt(
    ticket_number: str | None,
    text: str,
    matches: list[Match],
) -> list[dict]:
    """Build the messages array for the internal-note LLM call."""
    label = f" ({ticket_number})" if ticket_number else ""
    user_content = f"""Current Ticket{label}:
"{text}"

Historical Matches:
{format_matches(matches)}

{NOTE_INSTRUCTIONS}"""

    return [
        {"role": "system", "content": NOTE_SYSTEM},
        {"role": "user", "content": user_content},
    ]


def format_matches(matches: list[Match]) -> str:
    """Numbered list of matches with their similarity percentage."""
    blocks = []
    for i, m in enumerate(matches, 1):
        body = m.summary
        if m.notes:
            body += f"\n{m.notes}"
        blocks.append(
            f"{i}. Ticket {m.ticket_number} ({m.similarity * 100:.1f}% similar)\n{body}"
        )
    return "\n\n".join(blocks)
