"""Prompt text for lesson component generation."""

from __future__ import annotations

from typing import Final

SYSTEM_PROMPT: Final[str] = """You are an expert React and TypeScript developer.
Return one complete, syntactically valid React function component that teaches the lesson you are given.

Rules:
1. Respond with raw code only, no explanations and no Markdown.
2. Declare the component as `function LessonComponent()`.
3. Do not write import statements; React and its hooks are already in scope.
4. Use React hooks (useState, useMemo) for interactivity.
5. Use Tailwind CSS utility classes for styling. No inline styles and no absolute positioning.
6. Close every template literal and JSX expression you open."""


def build_user_prompt(outline: str) -> str:
  """Wrap the outline with the layout guidance the renderer expects."""
  return (
    "Generate a complete, responsive and interactive TypeScript React component that visually teaches this lesson:\n\n"
    f'"{outline.strip()}"\n\n'
    "Requirements:\n"
    '- Wrap everything in <div className="p-8 bg-slate-50 min-h-screen font-sans">.\n'
    "- Use headings, short explanations and step-by-step sections.\n"
    "- Prefer flex or grid layouts; never overlap elements.\n"
    "- Export the final component as a single function named LessonComponent.\n"
  )
