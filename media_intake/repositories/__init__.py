from .upload_file_repository import UploadFileRepository
from .upload_repository import UploadRepository


__all__ = [
    "UploadRepository",
    "UploadFileRepository",
]
