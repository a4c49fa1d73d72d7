from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.api.deps import get_generation_controller, verify_task_secret
from app.api.models import GenerateLessonRequest, GenerateLessonResponse
from app.services.generation import GenerationController, GenerationError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/generate-lesson", dependencies=[Depends(verify_task_secret)])
async def generate_lesson(payload: GenerateLessonRequest, controller: GenerationController = Depends(get_generation_controller)) -> Any:
  """Run generation for a queued lesson and report the outcome."""
  logger.info("Received generation task for lesson %s", payload.lesson_id)
  try:
    lesson = await controller.run(payload.lesson_id, payload.outline or "")
  except GenerationError:
    # Handled by the generation exception handler; the row already carries the message.
    raise
  except Exception as exc:  # noqa: BLE001
    logger.error("Generation task failed for lesson %s", payload.lesson_id, exc_info=True)
    await controller.record_failure(payload.lesson_id, str(exc) or type(exc).__name__)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"success": False, "error": str(exc) or type(exc).__name__})

  if lesson.status != "generated":
    return GenerateLessonResponse(success=True, lesson_id=lesson.lesson_id, message=f"Lesson already {lesson.status}; nothing generated").model_dump(by_alias=True)
  return GenerateLessonResponse(success=True, lesson_id=lesson.lesson_id, message="Lesson generated successfully").model_dump(by_alias=True)
