from media_intake.storage.credentials import CredentialChain
from media_intake.storage.credentials import ServiceAccountStrategy
from media_intake.storage.credentials import StaticTokenStrategy
from media_intake.storage.credentials import TokenExchangeStrategy
from media_intake.storage.drive_client import ColdStorageBridge
from media_intake.storage.drive_client import DriveFile
from media_intake.storage.drive_client import VerifyResult
from media_intake.storage.errors import AuthFailure
from media_intake.storage.errors import ColdStorageError
from media_intake.storage.errors import InitFailure
from media_intake.storage.errors import PermanentFailure
from media_intake.storage.errors import RetriesExhausted
from media_intake.storage.transfer import PutOutcome
from media_intake.storage.transfer import ResumableTransfer
from media_intake.storage.transfer import TransferState


__all__ = [
    "AuthFailure",
    "ColdStorageBridge",
    "ColdStorageError",
    "CredentialChain",
    "DriveFile",
    "InitFailure",
    "PermanentFailure",
    "PutOutcome",
    "ResumableTransfer",
    "RetriesExhausted",
    "ServiceAccountStrategy",
    "StaticTokenStrategy",
    "TokenExchangeStrategy",
    "TransferState",
    "VerifyResult",
]
