"""System prompt builder for the spreadsheet assistant."""
from __future__ import annotations

from typing import Sequence

ROLE_PREAMBLE = """\
You are SheetPilot, an AI assistant for Excel.
You help users analyze data, create charts, and perform operations in their workbook \
by calling the spreadsheet functions available to you.
"""

WORKING_RULES = """\

Key principles:
- Call one function at a time; use the result of each call to decide the next one.
- Before writing data to a cell or range, if you are unsure about existing content, \
use read_from_excel or read_range first to inspect the exact address.
- When writing, preserve user data unless explicitly told to overwrite.
- If you need more information to perform an operation, ask for it.
- Be helpful, clear, and concise in your responses.
"""


def build_system_prompt(
    *,
    active_worksheet: str | None = None,
    selected_range: str | None = None,
    tagged_worksheets: Sequence[str] = (),
) -> str:
    parts = [ROLE_PREAMBLE, "\n## Workbook Context\n"]
    if active_worksheet:
        parts.append(f'The active worksheet is "{active_worksheet}".\n')
    else:
        parts.append("The active worksheet is unknown.\n")
    if selected_range:
        parts.append(f"The user has selected range: {selected_range}. Use it when the request refers to it.\n")
    else:
        parts.append("No range is currently selected.\n")
    if tagged_worksheets:
        parts.append(
            "The user has tagged the following worksheets for this question: "
            f"{', '.join(tagged_worksheets)}. Consider them in your response and operations.\n"
        )
    parts.append(WORKING_RULES)
    return "".join(parts)
