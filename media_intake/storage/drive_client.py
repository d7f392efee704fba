"""Client for the Drive v3 compatible cold-storage API.

Resumable transfers follow the usual three-step contract: ``init_session``
returns an upload URL, ``put`` sends byte ranges against it (308 means keep
going, 200/201 means done and carries the new file id), and ``query_status``
asks how much the remote has already confirmed.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import random
import uuid
from typing import Any
from typing import AsyncIterator
from typing import Awaitable
from typing import Callable
from typing import Optional
from typing import Union

import httpx
from pydantic import BaseModel

from media_intake.storage.credentials import CredentialChain
from media_intake.storage.credentials import ServiceAccountStrategy
from media_intake.storage.credentials import StaticTokenStrategy
from media_intake.storage.credentials import TokenExchangeStrategy
from media_intake.storage.errors import InitFailure
from media_intake.storage.errors import PermanentFailure
from media_intake.storage.errors import RetriesExhausted
from media_intake.storage.transfer import PutOutcome
from media_intake.storage.transfer import ResumableTransfer
from media_intake.storage.transfer import content_range
from media_intake.storage.transfer import parse_range_header


logger = logging.getLogger(__name__)

FOLDER_MIME = "application/vnd.google-apps.folder"
DEFAULT_RANGE_SIZE = 8 * 1024 * 1024

Source = Union[bytes, AsyncIterator[bytes]]


class DriveFile(BaseModel):
    id: str
    name: str = ""
    size: Optional[int] = None
    mimeType: Optional[str] = None


class VerifyResult(BaseModel):
    present: bool = False
    can_list: bool = False
    file_id: Optional[str] = None
    size_bytes: Optional[int] = None
    sample: list[str] = []


def compute_backoff_ms(attempt: int, base_ms: int = 2000, max_ms: int = 15000) -> float:
    """Compute exponential backoff with jitter."""
    exp_backoff = base_ms * (2 ** (attempt - 1))
    jitter = random.uniform(0, exp_backoff * 0.1)
    return float(min(exp_backoff + jitter, max_ms))


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class ColdStorageBridge:
    def __init__(
        self,
        credentials: CredentialChain,
        api_url: str,
        upload_url: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
        transfer_http: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 5,
        backoff_base_ms: int = 2000,
        backoff_max_ms: int = 15000,
        range_size: int = DEFAULT_RANGE_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.credentials = credentials
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self._client = http or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        self._transfer_client = transfer_http or httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=10.0))
        self.max_attempts = max(1, max_attempts)
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.range_size = range_size
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: Any) -> "ColdStorageBridge":
        http = httpx.AsyncClient(timeout=config.httpx_storage_timeout)
        transfer_http = httpx.AsyncClient(timeout=config.httpx_transfer_timeout)
        chain = CredentialChain(
            [
                StaticTokenStrategy(config.storage_access_token),
                TokenExchangeStrategy(
                    http,
                    config.storage_token_uri,
                    config.storage_client_id,
                    config.storage_client_secret,
                    config.storage_refresh_token,
                ),
                ServiceAccountStrategy(
                    http,
                    config.storage_token_uri,
                    config.storage_service_account_json,
                    config.storage_scope,
                ),
            ]
        )
        return cls(
            chain,
            config.storage_api_url,
            config.storage_upload_url,
            http=http,
            transfer_http=transfer_http,
            max_attempts=config.resumable_max_attempts,
            backoff_base_ms=config.resumable_backoff_base_ms,
            backoff_max_ms=config.resumable_backoff_max_ms,
            range_size=config.resumable_range_size_bytes,
        )

    def with_access_token(self, token: Optional[str]) -> "ColdStorageBridge":
        """Same clients, with a caller-supplied bearer token tried before the configured strategies."""
        if not token:
            return self
        bridge = copy.copy(self)
        bridge.credentials = self.credentials.with_direct_token(token)
        return bridge

    async def __aenter__(self) -> "ColdStorageBridge":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()
        await self._transfer_client.aclose()

    async def _auth_headers(self) -> dict[str, str]:
        token = await self.credentials.resolve()
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _attempt(
        self, http: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> tuple[Optional[httpx.Response], Optional[int], str]:
        """One send. The response is returned only when it is not transient."""
        try:
            response = await http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            return None, None, f"{type(e).__name__}: {e}"
        if not is_transient_status(response.status_code):
            return response, response.status_code, ""
        return None, response.status_code, response.text

    async def _backoff(self, operation: str, attempt: int, status: Optional[int], body: str) -> None:
        delay_ms = compute_backoff_ms(attempt, self.backoff_base_ms, self.backoff_max_ms)
        logger.warning(
            f"{operation} failed (attempt {attempt}/{self.max_attempts}): "
            f"status={status} body={body[:200]!r}; retrying in {delay_ms:.0f}ms"
        )
        await self.sleep(delay_ms / 1000.0)

    def _exhausted(self, operation: str, status: Optional[int], body: str) -> RetriesExhausted:
        logger.error(f"{operation} failed after {self.max_attempts} attempts: status={status}")
        return RetriesExhausted(
            f"{operation} failed after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            status_code=status,
            body=body,
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ) -> tuple[httpx.Response, int]:
        """Send a request, retrying network errors, 429 and 5xx with capped backoff.

        Returns the first non-transient response and the attempt it took.
        """
        http = client or self._client
        last_status: Optional[int] = None
        last_body = ""
        for attempt in range(1, self.max_attempts + 1):
            response, last_status, last_body = await self._attempt(http, method, url, **kwargs)
            if response is not None:
                return response, attempt
            if attempt < self.max_attempts:
                await self._backoff(operation, attempt, last_status, last_body)
        raise self._exhausted(operation, last_status, last_body)

    async def _create(
        self,
        url: str,
        *,
        operation: str,
        lookup: Callable[[], Awaitable[Optional[str]]],
        **kwargs: Any,
    ) -> Union[httpx.Response, str]:
        """POST that creates a named resource.

        A transient failure may still have created it remotely, so ``lookup``
        runs before every resend. An id found there is returned instead of
        posting again.
        """
        last_status: Optional[int] = None
        last_body = ""
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                existing = await lookup()
                if existing:
                    logger.info(f"{operation} found the resource created by attempt {attempt - 1}: {existing}")
                    return existing
            response, last_status, last_body = await self._attempt(self._client, "POST", url, **kwargs)
            if response is not None:
                return response
            if attempt < self.max_attempts:
                await self._backoff(operation, attempt, last_status, last_body)
        raise self._exhausted(operation, last_status, last_body)

    async def init_session(self, name: str, mime: str, size_bytes: int, folder_id: str) -> str:
        """Start a resumable session and return its upload URL."""
        headers = await self._auth_headers()
        headers.update(
            {
                "Content-Type": "application/json; charset=UTF-8",
                "X-Upload-Content-Type": mime or "application/octet-stream",
                "X-Upload-Content-Length": str(size_bytes),
            }
        )
        response, _ = await self._request(
            "POST",
            f"{self.upload_url}/files",
            operation="init_session",
            params={"uploadType": "resumable", "supportsAllDrives": "true"},
            json={"name": name, "parents": [folder_id]},
            headers=headers,
        )
        if response.status_code >= 400:
            raise InitFailure("Failed to start resumable session", response.status_code, response.text)
        location = response.headers.get("location")
        if not location:
            raise InitFailure("No resumable upload URL returned", response.status_code, response.text)
        logger.info(f"Started resumable session for {name!r} ({size_bytes} bytes) in folder {folder_id}")
        return location

    async def put(self, upload_url: str, payload: bytes, start: int, total: int, mime: str = "") -> PutOutcome:
        """Send bytes [start, start + len(payload)) of a ``total`` byte file."""
        if not payload:
            raise ValueError("Range payload must not be empty")
        end = start + len(payload) - 1
        response, attempts = await self._request(
            "PUT",
            upload_url,
            operation=f"put bytes {start}-{end}/{total}",
            client=self._transfer_client,
            content=payload,
            headers={
                "Content-Range": content_range(start, end, total),
                "Content-Type": mime or "application/octet-stream",
            },
        )
        return self._outcome(response, attempts)

    async def query_status(self, upload_url: str, total: int) -> PutOutcome:
        """Ask the remote how many bytes of the session it has confirmed."""
        response, attempts = await self._request(
            "PUT",
            upload_url,
            operation="query_status",
            client=self._transfer_client,
            content=b"",
            headers={"Content-Range": f"bytes */{total}"},
        )
        return self._outcome(response, attempts)

    @staticmethod
    def _outcome(response: httpx.Response, attempts: int) -> PutOutcome:
        if response.status_code == 308:
            return PutOutcome(
                completed=False,
                bytes_confirmed=parse_range_header(response.headers.get("range")),
                attempts=attempts,
            )
        if response.status_code in (200, 201):
            try:
                file_id = response.json().get("id")
            except ValueError:
                file_id = None
            if not file_id:
                raise PermanentFailure("Upload completed without a file id", response.status_code, response.text)
            return PutOutcome(completed=True, bytes_confirmed=0, destination_file_id=str(file_id), attempts=attempts)
        raise PermanentFailure("Range upload rejected", response.status_code, response.text)

    async def transfer(
        self, source: Source, name: str, mime: str, size_bytes: int, folder_id: str
    ) -> ResumableTransfer:
        """Upload a whole file in sequential ranges of ``range_size`` bytes."""
        state = ResumableTransfer(total_size=size_bytes, mime=mime or "application/octet-stream")
        state.initiating()
        try:
            state.initiated(await self.init_session(name, state.mime, size_bytes, folder_id))
            buffer = bytearray()
            async for piece in _iterate(source):
                buffer.extend(piece)
                while len(buffer) >= self.range_size:
                    await self._send_range(state, buffer, self.range_size)
            while not state.done:
                if not buffer:
                    raise PermanentFailure(
                        f"Stream ended at {state.bytes_confirmed} of {size_bytes} bytes before the upload completed"
                    )
                await self._send_range(state, buffer, len(buffer))
        except Exception:
            state.fail()
            raise
        logger.info(f"Transferred {name!r} ({size_bytes} bytes) as {state.destination_file_id}")
        return state

    async def _send_range(self, state: ResumableTransfer, buffer: bytearray, size: int) -> None:
        if state.done:
            raise PermanentFailure(f"Received more than the declared {state.total_size} bytes")
        start = state.bytes_confirmed
        try:
            outcome = await self.put(state.upload_url, bytes(buffer[:size]), start, state.total_size, state.mime)
        except RetriesExhausted as e:
            outcome = await self._resync(state, start, e)
        state.record(outcome)
        if state.done:
            del buffer[:]
            return
        consumed = state.bytes_confirmed - start
        if consumed <= 0:
            raise PermanentFailure(f"Remote confirmed no progress past byte {start}")
        del buffer[:consumed]

    async def _resync(self, state: ResumableTransfer, start: int, error: RetriesExhausted) -> PutOutcome:
        """After a range gave up, ask the remote what it kept so the next range starts there.

        The original error stands when the remote holds nothing past ``start``.
        """
        try:
            outcome = await self.query_status(state.upload_url, state.total_size)
        except RetriesExhausted:
            raise error
        if not outcome.completed and outcome.bytes_confirmed <= start:
            raise error
        if outcome.completed:
            logger.info(f"Remote finished the transfer despite: {error}")
        else:
            logger.info(f"Resuming transfer at byte {outcome.bytes_confirmed} of {state.total_size} after: {error}")
        return outcome

    async def list_files(self, folder_id: str, name: Optional[str] = None, page_size: int = 10) -> list[DriveFile]:
        clauses = [f"'{escape_query_value(folder_id)}' in parents", "trashed = false"]
        if name is not None:
            clauses.insert(0, f"name = '{escape_query_value(name)}'")
        response, _ = await self._request(
            "GET",
            f"{self.api_url}/files",
            operation="list_files",
            params={
                "q": " and ".join(clauses),
                "fields": "files(id,name,size,mimeType)",
                "pageSize": str(page_size),
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            },
            headers=await self._auth_headers(),
        )
        if response.status_code >= 400:
            raise PermanentFailure("File listing failed", response.status_code, response.text)
        return [DriveFile.model_validate(item) for item in response.json().get("files", [])]

    async def find_file(self, folder_id: str, name: str, size_bytes: Optional[int] = None) -> Optional[DriveFile]:
        """First file named ``name`` in the folder, optionally with an exact byte size."""
        for item in await self.list_files(folder_id, name=name):
            if item.mimeType == FOLDER_MIME:
                continue
            if size_bytes is None or item.size == size_bytes:
                return item
        return None

    async def _find_file_id(self, folder_id: str, name: str) -> Optional[str]:
        found = await self.find_file(folder_id, name)
        return found.id if found else None

    async def verify(self, folder_id: str, name: Optional[str] = None, size_bytes: Optional[int] = None) -> VerifyResult:
        """Presence check for one file, or a listing of the folder when no name is given."""
        if name:
            found = await self.find_file(folder_id, name, size_bytes)
            if found is None:
                return VerifyResult(present=False)
            return VerifyResult(present=True, file_id=found.id, size_bytes=found.size)

        files = await self.list_files(folder_id, page_size=5)
        return VerifyResult(can_list=True, sample=[f.name for f in files])

    async def find_folder(self, name: str, parent_id: str) -> Optional[str]:
        for item in await self.list_files(parent_id, name=name):
            if item.mimeType == FOLDER_MIME:
                return item.id
        return None

    async def ensure_folder(self, name: str, parent_id: str) -> str:
        """Return the id of folder ``name`` under ``parent_id``, creating it when missing."""
        existing = await self.find_folder(name, parent_id)
        if existing:
            return existing

        response = await self._create(
            f"{self.api_url}/files",
            operation="create_folder",
            lookup=lambda: self.find_folder(name, parent_id),
            params={"supportsAllDrives": "true", "fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME, "parents": [parent_id]},
            headers=await self._auth_headers(),
        )
        if isinstance(response, str):
            return response
        if response.status_code >= 400:
            raise PermanentFailure(f"Failed to create folder {name!r}", response.status_code, response.text)
        folder_id = response.json().get("id")
        if not folder_id:
            raise PermanentFailure(f"Folder {name!r} created without an id", response.status_code, response.text)
        logger.info(f"Created folder {name!r} ({folder_id}) under {parent_id}")
        return str(folder_id)

    async def create_json_file(self, name: str, parent_id: str, document: dict[str, Any]) -> Optional[str]:
        """Write a small JSON document in one multipart request; returns the new file id, if any."""
        boundary = f"media-intake-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": name, "parents": [parent_id], "mimeType": "application/json"})
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{json.dumps(document, indent=2, default=str)}\r\n"
            f"--{boundary}--\r\n"
        ).encode()
        headers = await self._auth_headers()
        headers["Content-Type"] = f"multipart/related; boundary={boundary}"
        response = await self._create(
            f"{self.upload_url}/files",
            operation="create_json_file",
            lookup=lambda: self._find_file_id(parent_id, name),
            params={"uploadType": "multipart", "supportsAllDrives": "true", "fields": "id"},
            content=body,
            headers=headers,
        )
        if isinstance(response, str):
            return response
        if response.status_code >= 400:
            raise PermanentFailure(f"Failed to write {name}", response.status_code, response.text)
        file_id = response.json().get("id")
        return str(file_id) if file_id else None

    async def about(self) -> dict[str, Any]:
        """Authenticated call used by the status endpoint."""
        response, _ = await self._request(
            "GET",
            f"{self.api_url}/about",
            operation="about",
            params={"fields": "user(displayName,emailAddress)"},
            headers=await self._auth_headers(),
        )
        if response.status_code >= 400:
            raise PermanentFailure("Storage status check failed", response.status_code, response.text)
        return dict(response.json())


async def _iterate(source: Source) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray)):
        yield bytes(source)
        return
    async for piece in source:
        if piece:
            yield piece
