import re
from typing import Awaitable
from typing import Callable

from fastapi import Request
from fastapi import Response

from media_intake.services.ray_id_service import generate_ray_id
from media_intake.services.ray_id_service import ray_id_context


_RAY_ID_RE = re.compile(r"^[0-9a-f]{8,32}$")


async def ray_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag every request with a ray ID.

    A well-formed inbound X-Ray-ID header is honoured so a client retrying a
    chunk can correlate its attempts; otherwise a fresh one is generated. The ID
    is put in the logging contextvar, on request.state, and echoed back.
    """
    inbound = (request.headers.get("x-ray-id") or "").lower()
    ray_id = inbound if _RAY_ID_RE.match(inbound) else generate_ray_id()
    ray_id_context.set(ray_id)
    request.state.ray_id = ray_id

    response = await call_next(request)

    response.headers["X-Ray-ID"] = ray_id

    return response
