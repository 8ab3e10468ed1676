"""aiohttp HTTP surface."""

from chatrelay.web.http import create_app, register_routes, start_http_server

__all__ = ["create_app", "register_routes", "start_http_server"]
