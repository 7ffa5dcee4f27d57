"""Prompt 模板"""

from __future__ import annotations

from gptchat.chat.transcript import Role, Transcript

SYSTEM_PROMPT = (
    "You are about to enter a conversation with a user, they may or may not ask you "
    "questions about math. If you are trying to express a formula or variable or any "
    "other math concept that can be expressed in LaTeX, please do so. You can create an "
    "inline LaTeX block with a single dollar sign, for example: $a$. If you want to "
    "create a block that is centered, please use double dollar signs: $$a$$. If your "
    "output happens to contain a dollar sign, but you do not want the dollar sign to be "
    "interpreted as the start of a LaTeX block, please escape it using a backslash like "
    "this: \\$"
)

TITLE_PROMPT = (
    "Summarize the conversation above as a concise title of at most six words. "
    "Reply with the title only, without quotes or trailing punctuation."
)


def build_request_messages(transcript: Transcript) -> list[dict]:
    """System directive + history, in wire shape."""
    messages = [{"role": Role.SYSTEM.value, "content": SYSTEM_PROMPT}]
    messages.extend(m.to_api() for m in transcript)
    return messages


def build_title_messages(transcript: Transcript) -> list[dict]:
    messages = build_request_messages(transcript)
    messages.append({"role": Role.USER.value, "content": TITLE_PROMPT})
    return messages


def clean_title(raw: str) -> str:
    title = raw.strip().splitlines()[0] if raw.strip() else ""
    return title.strip().strip("\"'").rstrip(".").strip()
