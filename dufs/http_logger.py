"""Access log lines built from a `$variable` format string."""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from dufs.auth import get_auth_user
from dufs.logger import LOGGER_NAME

DEFAULT_LOG_FORMAT = '$remote_addr "$request" $status'

_MISSING = "-"
_HEADER_PREFIX = "$http_"

_log = logging.getLogger(LOGGER_NAME)


class ElementKind(enum.Enum):
    """What a piece of a log format stands for."""

    VARIABLE = "variable"
    HEADER = "header"
    LITERAL = "literal"


@dataclass(frozen=True)
class LogElement:
    """One piece of a log format: a variable, a request header or literal text."""

    kind: ElementKind
    value: str


def _header_value(headers: Any, name: str) -> str | None:
    """Case-insensitive header lookup; None if absent or not visible ASCII."""
    if headers is None:
        return None
    items = headers.items() if isinstance(headers, Mapping) or hasattr(headers, "items") else headers
    wanted = name.lower()
    for key, value in items:
        if str(key).lower() != wanted:
            continue
        if isinstance(value, (bytes, bytearray)):
            try:
                value = bytes(value).decode("ascii")
            except UnicodeDecodeError:
                return None
        text = str(value)
        if all(char == "\t" or 32 <= ord(char) < 127 for char in text):
            return text
        return None
    return None


@dataclass
class HttpLogger:
    """Formats and emits one access log line per request."""

    elements: tuple[LogElement, ...] = ()

    @classmethod
    def parse(cls, s: str) -> HttpLogger:
        """Parse a format such as `$remote_addr "$request" $status`.

        `$http_<name>` stands for a request header, with `_` read as `-`.
        """
        elements: list[LogElement] = []
        is_var = False
        cache = ""
        for char in f"{s} ":
            if char == "$":
                if cache:
                    elements.append(LogElement(ElementKind.LITERAL, cache))
                cache = ""
                is_var = True
            elif is_var and not (char.isalnum() or char == "_"):
                if cache.startswith(_HEADER_PREFIX):
                    header = cache[len(_HEADER_PREFIX):].replace("_", "-")
                    elements.append(LogElement(ElementKind.HEADER, header))
                elif cache.startswith("$"):
                    elements.append(LogElement(ElementKind.VARIABLE, cache[1:]))
                cache = ""
                is_var = False
            cache += char
        cache = cache.strip()
        if cache:
            elements.append(LogElement(ElementKind.LITERAL, cache))
        return cls(tuple(elements))

    @classmethod
    def default(cls) -> HttpLogger:
        return cls.parse(DEFAULT_LOG_FORMAT)

    def data(self, request: Any) -> dict[str, str]:
        """Collect the values the format needs from a request.

        The request has `method`, `uri` and `headers` attributes.
        """
        data: dict[str, str] = {}
        headers = getattr(request, "headers", None)
        for element in self.elements:
            if element.kind is ElementKind.VARIABLE:
                if element.value == "request":
                    data[element.value] = f"{request.method} {request.uri}"
                elif element.value == "remote_user":
                    authorization = _header_value(headers, "authorization")
                    if authorization is not None:
                        user = get_auth_user(authorization)
                        if user is not None:
                            data[element.value] = user
            elif element.kind is ElementKind.HEADER:
                value = _header_value(headers, element.value)
                if value is not None:
                    data[element.value] = value
        return data

    def render(self, data: Mapping[str, str]) -> str:
        """The log line for `data`, with `-` for every missing value."""
        return "".join(
            element.value
            if element.kind is ElementKind.LITERAL
            else data.get(element.value, _MISSING)
            for element in self.elements
        )

    def log(self, data: Mapping[str, str], err: str | None = None) -> None:
        """Emit the line at INFO, or at ERROR with `err` appended."""
        if not self.elements:
            return
        output = self.render(data)
        if err is not None:
            _log.error("%s %s", output, err)
        else:
            _log.info("%s", output)