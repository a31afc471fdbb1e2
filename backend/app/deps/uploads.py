import re
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, UploadFile
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.utils import storage

_ANSWER_KEY = re.compile(r"^answers\[(.+)\]$")

def to_upload(file: Optional[UploadFile]) -> Optional[storage.Upload]:
    if file is None or not file.filename:
        return None
    return storage.Upload(filename=file.filename, content=file.file.read(), content_type=file.content_type)

async def read_answers(request: Request) -> Dict[str, Any]:
    """Answers from a multipart form (answers[key]) or a JSON body ({"answers": {...}})."""
    ctype = request.headers.get("content-type", "")
    if ctype.startswith("multipart/form-data") or ctype.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        answers: Dict[str, Any] = {}
        for key, value in form.multi_items():
            m = _ANSWER_KEY.match(key)
            if not m:
                continue
            if isinstance(value, StarletteUploadFile):
                content = await value.read()
                answers[m.group(1)] = storage.Upload(value.filename, content, value.content_type) if value.filename else None
            else:
                answers[m.group(1)] = value
        return answers
    try:
        body = await request.json() if await request.body() else {}
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    answers = body.get("answers") if isinstance(body, dict) else None
    if answers is None:
        return {}
    if not isinstance(answers, dict):
        raise HTTPException(status_code=400, detail="answers must be an object")
    return answers
