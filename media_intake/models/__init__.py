from media_intake.models.upload import UploadDB
from media_intake.models.upload_file import UploadFileDB


__all__ = [
    "UploadDB",
    "UploadFileDB",
]
