import os
import uuid
from typing import Optional, Tuple

import aiofiles
from fastapi import UploadFile

from .config import MAX_UPLOAD_SIZE

CHUNK_SIZE = 1024 * 1024  # 1MB

class UploadTooLargeError(ValueError):
    pass

def has_file(upload_file: Optional[UploadFile]) -> bool:
    return upload_file is not None and bool(upload_file.filename)

async def save_upload_file(upload_file: UploadFile, upload_dir: str,
                           max_size: int = MAX_UPLOAD_SIZE) -> Tuple[str, int]:
    """Stream an upload to disk in chunks. Returns (path, size in bytes)."""
    os.makedirs(upload_dir, exist_ok=True)
    filename = os.path.basename(upload_file.filename or "upload")
    destination = os.path.join(upload_dir, f"{uuid.uuid4().hex}_{filename}")

    size = 0
    try:
        async with aiofiles.open(destination, "wb") as out_file:
            while chunk := await upload_file.read(CHUNK_SIZE):
                size += len(chunk)
                if size > max_size:
                    raise UploadTooLargeError(f"{filename} exceeds {max_size} bytes")
                await out_file.write(chunk)
    except UploadTooLargeError:
        os.remove(destination)
        raise
    finally:
        await upload_file.close()

    return destination, size
