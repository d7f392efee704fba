"""Utility functions for the media intake service."""

import dataclasses
import functools
import logging
import os
import pathlib
import re
import secrets
import typing
from datetime import datetime
from typing import Any
from typing import Callable
from typing import TypeVar


T = TypeVar("T")

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r'[/\\<>:"|?*\x00-\x1f]')


def env(key: str, convert: Callable[[str], T] = typing.cast(Callable[[str], T], str), **kwargs: Any) -> T:
    """Load a value from environment variables with optional default and type conversion."""
    key, partition, default = key.partition(":")

    def default_factory(
        key_val: str = key, default_val: str = default, convert_func: Callable[[str], T] = convert
    ) -> T:
        if key_val in os.environ:
            return convert_func(os.environ[key_val])

        if partition == ":":
            return convert_func(default_val)

        raise KeyError(key_val)

    return typing.cast(T, dataclasses.field(default_factory=default_factory, **kwargs))


def as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@functools.cache
def get_query(name: str) -> str:
    """Load SQL query from disk once and cache it in memory."""
    file_name = f"{name}.sql"
    path = pathlib.Path(__file__).parent.joinpath("sql").joinpath("queries").joinpath(file_name)

    logger.info(f"Loading/caching query: {file_name}")
    with path.open("r") as fp:
        return fp.read().strip()


def sanitize_name(name: str) -> str:
    """Make a user supplied name safe for use as a destination folder name."""
    return _UNSAFE_NAME_CHARS.sub("-", name).strip()[:200]


def new_upload_id() -> str:
    """16 hex chars, same shape the upload clients already expect."""
    return secrets.token_hex(8)


def timestamp_label(now: datetime | None = None) -> str:
    d = now or datetime.now()
    return d.strftime("%Y-%m-%d %H-%M-%S")
