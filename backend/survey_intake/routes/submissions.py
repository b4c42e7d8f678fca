from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Tuple, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.datastructures import UploadFile

from ..dependencies import get_orchestrator
from ..services.models import Failure, Submission, UploadedFile
from ..services.orchestrator import SubmissionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["submissions"])

PARTICIPANT_INFO_FIELD = "participantInfo"
SUCCESS_MESSAGE = "성공적으로 제출되어 연구자에게 전달되었습니다."
FAILURE_MESSAGE = "제출을 처리하지 못했습니다. 잠시 후 다시 시도해주세요."


class SubmissionResponse(BaseModel):
    success: bool
    message: str
    document_id: str | None = Field(None, alias="documentId")
    stage: str | None = None

    model_config = ConfigDict(populate_by_name=True)


def split_form(
    items: Iterable[Tuple[str, Union[str, UploadFile]]],
) -> Tuple[Dict[str, str], List[UploadedFile]]:
    fields: Dict[str, str] = {}
    files: List[UploadedFile] = []
    for name, value in items:
        if isinstance(value, UploadFile):
            files.append(
                UploadedFile(
                    field_name=name,
                    original_filename=value.filename or name,
                    mime_type=value.content_type or "application/octet-stream",
                    content_handle=value,
                )
            )
        else:
            fields[name] = value
    return fields, files


def resolve_fields(fields: Dict[str, str]) -> Dict[str, Any]:
    """Pick the submission shape: a JSON blob in ``participantInfo`` or flat fields."""

    blob = fields.get(PARTICIPANT_INFO_FIELD)
    if blob is None:
        return dict(fields)

    try:
        parsed = json.loads(blob)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="participantInfo 값이 올바른 JSON이 아닙니다.") from exc
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="participantInfo 값은 JSON 객체여야 합니다.")
    return parsed


async def _close_all(files: List[UploadedFile]) -> None:
    for upload in files:
        await upload.content_handle.close()


@router.post("/upload-and-email", response_model=SubmissionResponse)
async def upload_and_email(
    request: Request,
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    form = await request.form()
    raw_fields, files = split_form(form.multi_items())
    logger.info("파일 %d개와 필드 %d개를 받았습니다.", len(files), len(raw_fields))

    try:
        fields = resolve_fields(raw_fields)
    except HTTPException:
        await _close_all(files)
        raise

    outcome = await orchestrator.handle(Submission(fields=fields, files=files))

    if isinstance(outcome, Failure):
        body = SubmissionResponse(success=False, message=FAILURE_MESSAGE, stage=outcome.stage)
        return JSONResponse(
            status_code=500,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )

    body = SubmissionResponse(
        success=True,
        message=SUCCESS_MESSAGE,
        document_id=outcome.document_id,
    )
    return JSONResponse(status_code=200, content=body.model_dump(by_alias=True, exclude_none=True))
