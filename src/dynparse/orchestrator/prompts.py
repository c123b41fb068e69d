"""Deterministic prompt builders for script generation and retries."""

from __future__ import annotations

from collections.abc import Sequence

from .models import AttemptRecord

SYSTEM_PROMPT = """
You are an expert Python programmer that creates parsing scripts. Your task is to write a single, complete Python script based on the user's request.

CRITICAL RULES:
1. The script you write will receive the raw document text via standard input (stdin).
2. The script must print a single, valid JSON object to standard output (stdout).
3. The script MUST NOT use any external libraries like BeautifulSoup. Use only standard libraries like `sys`, `json`, and `re`.
4. Your output must be ONLY the raw Python code. Do not include explanations, markdown, or code blocks.
5. Always include proper error handling to avoid crashes.
6. If you cannot find the requested data, return an empty JSON object {} rather than failing.
7. Make sure your JSON output is properly formatted and valid.

If this is a retry attempt, learn from the previous errors and fix them in your new script.
""".strip()


def system_prompt() -> str:
    """Return the fixed system prompt that seeds every conversation."""
    return SYSTEM_PROMPT


def build_user_prompt(
    document: str,
    instructions: str,
    attempts: Sequence[AttemptRecord],
    attempt_number: int,
) -> str:
    """
    Build the user message for ``attempt_number``.

    The instructions and document are embedded verbatim. From the second
    attempt on, every earlier attempt is replayed with its status, error and
    failed script so the model can steer away from what already broke.
    """
    sections: list[str] = [
        "**Instructions:**",
        instructions,
        "",
        "**Document to Parse:**",
        "---",
        document,
        "---",
        "",
    ]

    if attempt_number > 1 and attempts:
        sections.append("**Previous Attempts and Errors:**")
        for record in attempts:
            if record.success:
                sections.append(f"Attempt {record.attempt_number}: SUCCESS")
                continue
            sections.append(f"Attempt {record.attempt_number}: FAILED - {record.error}")
            if record.script:
                sections += [
                    "Script that failed:",
                    "```python",
                    record.script,
                    "```",
                    "",
                ]
        sections += ["Please learn from these errors and create a better script.", ""]

    sections.append("Provide the Python script now:")
    return "\n".join(sections)


def format_attempt_history(attempts: Sequence[AttemptRecord]) -> str:
    """Render the full attempt transcript reported when retries run out."""
    lines: list[str] = []
    for record in attempts:
        lines.append(f"--- Attempt {record.attempt_number} ---")
        if record.success:
            lines.append("Status: SUCCESS")
        else:
            lines.append("Status: FAILED")
            if record.error is not None:
                lines.append(f"Error: {record.error}")
        if record.script:
            lines += ["Script:", record.script, ""]
    return "\n".join(lines)
