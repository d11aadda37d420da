"""Serve every route under ``/api`` as well as at the root.

The web client calls ``/api/credits``, ``/api/transcription/<id>`` and so on;
the routers are mounted without the prefix.
"""

from typing import Optional

from starlette.types import ASGIApp, Receive, Scope, Send


def strip_prefix(path: str, prefix: str) -> Optional[str]:
    """``path`` without ``prefix``, or None when it does not start with it."""
    if path == prefix:
        return "/"
    if path.startswith(prefix + "/"):
        return path[len(prefix) :]
    return None


class ApiPrefixMiddleware:
    def __init__(self, app: ASGIApp, prefix: str = "/api") -> None:
        self.app = app
        self.prefix = "/" + prefix.strip("/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            stripped = strip_prefix(scope.get("path") or "", self.prefix)
            if stripped is not None:
                scope = {
                    **scope,
                    "path": stripped,
                    "raw_path": stripped.encode(),
                    "root_path": (scope.get("root_path") or "") + self.prefix,
                }
        await self.app(scope, receive, send)
