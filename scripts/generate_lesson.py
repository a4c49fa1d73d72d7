"""Submit a lesson outline to a running service, wait for it and write the rendered HTML."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure repo root is on sys.path so local imports resolve before site-packages.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.client.lessons_client import ClientTimeouts, LessonsClient  # noqa: E402
from app.codegen.html import error_card, render_html  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description=__doc__)
  parser.add_argument("outline", help="Lesson outline, e.g. 'A 3-question quiz on fractions'.")
  parser.add_argument("--base-url", default="http://127.0.0.1:8080", help="Lesson service base URL.")
  parser.add_argument("--session-id", default=None, help="Reuse an existing viewer session.")
  parser.add_argument("--output", type=Path, default=None, help="Write HTML here instead of stdout.")
  parser.add_argument("--soft-timeout", type=float, default=60.0)
  parser.add_argument("--hard-timeout", type=float, default=120.0)
  parser.add_argument("--abort-timeout", type=float, default=125.0)
  return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
  timeouts = ClientTimeouts(soft_seconds=args.soft_timeout, hard_seconds=args.hard_timeout, abort_seconds=args.abort_timeout)
  async with LessonsClient(args.base_url, session_id=args.session_id, timeouts=timeouts) as client:
    outcome = await client.generate(args.outline, on_warning=lambda message: print(message, file=sys.stderr))
    lesson = outcome.lesson
    print(f"lesson={lesson.get('id')} status={outcome.status} session={client.session_id}", file=sys.stderr)

    result = await client.render(lesson)
    if result is None:
      document = error_card(lesson.get("errorMessage") or "Lesson is not ready.", title="Generation Error")
    else:
      document = render_html(result, lesson.get("generatedSource"))

  if args.output is None:
    print(document)
  else:
    args.output.write_text(document, encoding="utf-8")
  return 0 if outcome.status == "generated" else 1


def main(argv: list[str] | None = None) -> int:
  return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
  raise SystemExit(main())
