# SPDX-License-Identifier: AGPL-3.0-only
"""Route lookup collaborators: path -> controller/action."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Protocol
from urllib.parse import urlsplit

from .types import ConfigurationError

_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-f]{8}-[0-9a-f-]{27}|:\w+)$", re.IGNORECASE)
ROOT_FALLBACKS = (("home", "index"), ("pages", "home"), ("home", "about"))


@dataclass(frozen=True)
class RouteMatch:
    controller: str
    action: str
    params: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, target: str, params: Mapping[str, str] | None = None) -> RouteMatch:
        controller, sep, action = str(target).strip().partition("#")
        if not sep or not controller or not action:
            raise ConfigurationError(f"route target must look like 'controller#action', got {target!r}")
        return cls(controller.strip("/"), action, dict(params or {}))

    @property
    def endpoint(self) -> str:
        return f"{self.controller}#{self.action}"


class Router(Protocol):
    def recognize(self, path: str) -> RouteMatch | None: ...


def normalize_path(path: str) -> str:
    parts = urlsplit(str(path or "").strip())
    text = parts.path or "/"
    if not text.startswith("/"):
        text = "/" + text
    if len(text) > 1:
        text = text.rstrip("/")
    return text


class RouteTable:
    """Static table, e.g. `{"/users/:id": "users#show"}`. First match wins."""

    def __init__(self, routes: Mapping[str, str] | None = None) -> None:
        self._routes: list[tuple[re.Pattern[str], RouteMatch]] = []
        for pattern, target in (routes or {}).items():
            self._routes.append((self._compile(pattern), RouteMatch.parse(target)))

    @staticmethod
    def _compile(pattern: str) -> re.Pattern[str]:
        out = []
        for segment in normalize_path(pattern).split("/"):
            if segment.startswith(":"):
                out.append(rf"(?P<{segment[1:]}>[^/]+)")
            elif segment.startswith("*"):
                out.append(rf"(?P<{segment[1:] or 'splat'}>.*)")
            else:
                out.append(re.escape(segment))
        return re.compile("/".join(out) or "/")

    def __len__(self) -> int:
        return len(self._routes)

    def recognize(self, path: str) -> RouteMatch | None:
        text = normalize_path(path)
        for pattern, match in self._routes:
            m = pattern.fullmatch(text)
            if m:
                return RouteMatch(match.controller, match.action, m.groupdict())
        return None


class ConventionRouter:
    """Derives controller/action from the path itself.

    `/a/b/c` is `a/b#c`, `/a` is `a#index`, id-like segments are dropped
    (`/users/5` is `users#show`, `/users/5/edit` is `users#edit`).
    """

    def candidates(self, path: str) -> list[RouteMatch]:
        text = normalize_path(path)
        if text == "/":
            return [RouteMatch(c, a) for c, a in ROOT_FALLBACKS]
        segments = [s for s in text.strip("/").split("/") if s]
        if segments and _ID_SEGMENT.match(segments[-1]):
            return [RouteMatch("/".join(s for s in segments[:-1] if not _ID_SEGMENT.match(s)) or "home", "show")]
        segments = [s for s in segments if not _ID_SEGMENT.match(s)]
        if len(segments) == 1:
            return [RouteMatch(segments[0], "index")]
        return [RouteMatch("/".join(segments[:-1]), segments[-1]), RouteMatch("/".join(segments), "index")]

    def recognize(self, path: str) -> RouteMatch | None:
        found = self.candidates(path)
        return found[0] if found else None


def route_candidates(path: str, router: Router | None = None) -> list[RouteMatch]:
    """Router answer first, then convention guesses, without duplicates."""
    out: list[RouteMatch] = []
    if router is not None:
        match = router.recognize(path)
        if match is not None:
            out.append(match)
    for match in ConventionRouter().candidates(path):
        if all(m.endpoint != match.endpoint for m in out):
            out.append(match)
    return out
