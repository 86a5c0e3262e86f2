from typing import List, Optional

from fastapi import UploadFile

from services.assets import Upload


async def read_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    """Buffer a multipart file into an Upload; a missing or empty part is None."""
    if file is None or not file.filename:
        return None
    data = await file.read()
    return Upload(filename=file.filename, content_type=file.content_type or "", data=data)


async def read_uploads(files: Optional[List[UploadFile]]) -> List[Upload]:
    uploads = []
    for file in files or []:
        upload = await read_upload(file)
        if upload is not None:
            uploads.append(upload)
    return uploads
