"""HTTP server for the relay.

Single aiohttp application handling all routes (under ``api_prefix``):
- /health - Health check
- /pair/generate, /pair/join, /pair/status - Pairing (code owner and joiner)
- /pair/unpair, /device/reset - Pairing teardown
- /send, /poll, /typing, /read, /clear - Messaging within a pair

Every failure is returned as ``{"error": message}`` with the status of
the RelayError that caused it.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from pairrelay.errors import RelayError, ValidationError
from pairrelay.formatting import iso_timestamp
from pairrelay.relay import RelayService

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


# =============================================================================
# Middlewares
# =============================================================================

@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn relay errors into JSON error responses."""
    try:
        return await handler(request)
    except RelayError as e:
        return web.json_response({"error": e.message}, status=e.status)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return web.json_response({"error": "Internal server error"}, status=500)


def cors_middleware(origin: str) -> Callable:
    """Build a middleware that allows cross-origin calls from ``origin``."""

    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=204)
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                # Router 404/405 and the like
                e.headers.update(headers)
                raise
        response.headers.update(headers)
        return response

    return middleware


# =============================================================================
# Request parsing
# =============================================================================

async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")
    return data


def _string_field(data: Any, key: str) -> str:
    """Read an optional string field; missing reads as empty."""
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"Invalid {key}")
    return str(value)


# =============================================================================
# Server
# =============================================================================

class RelayServer:
    """HTTP front end for a RelayService."""

    def __init__(
        self,
        relay: RelayService,
        api_prefix: str = "/api",
        cors_origin: Optional[str] = "*",
    ):
        """Initialize the server.

        Args:
            relay: Service holding all relay state.
            api_prefix: Path prefix for every route.
            cors_origin: Allowed origin for browser clients; None disables CORS.
        """
        self.relay = relay
        self.api_prefix = api_prefix.rstrip("/")

        middlewares = [error_middleware]
        if cors_origin:
            middlewares.insert(0, cors_middleware(cors_origin))

        self.app = web.Application(middlewares=middlewares)
        self.app["relay"] = relay
        self._setup_routes()

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._stopped = asyncio.Event()
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        p = self.api_prefix
        router = self.app.router

        # Health
        router.add_get(f"{p}/health", self._handle_health)

        # Pairing
        router.add_post(f"{p}/pair/generate", self._handle_generate)
        router.add_post(f"{p}/pair/join", self._handle_join)
        router.add_get(f"{p}/pair/status", self._handle_status)
        router.add_post(f"{p}/pair/unpair", self._handle_unpair)
        router.add_post(f"{p}/device/reset", self._handle_reset)

        # Messaging
        router.add_post(f"{p}/send", self._handle_send)
        router.add_get(f"{p}/poll", self._handle_poll)
        router.add_post(f"{p}/typing", self._handle_typing)
        router.add_post(f"{p}/read", self._handle_read)
        router.add_post(f"{p}/clear", self._handle_clear)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Diagnostic counters; no authorization."""
        return web.json_response(self.relay.health().to_dict())

    # =========================================================================
    # Pairing
    # =========================================================================

    async def _handle_generate(self, request: web.Request) -> web.Response:
        """Issue a pairing code to the requesting device."""
        data = await _read_json(request)
        pending = self.relay.generate_code(_string_field(data, "deviceId"))

        return web.json_response({
            "code": pending.code,
            "expiresAt": iso_timestamp(pending.expires_at),
        })

    async def _handle_join(self, request: web.Request) -> web.Response:
        """Second device enters the code to complete pairing."""
        data = await _read_json(request)
        device_id = _string_field(data, "deviceId")
        pair = self.relay.join(device_id, _string_field(data, "code"))

        return web.json_response({
            "pairId": pair.id,
            "deviceId": device_id,
            "partnerDeviceId": pair.partner_of(device_id),
        })

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Polled by the code owner to see whether a partner joined."""
        query = request.query
        status = self.relay.status(
            _string_field(query, "deviceId"), _string_field(query, "code")
        )
        return web.json_response(status.to_dict())

    async def _handle_unpair(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        self.relay.unpair(
            _string_field(data, "pairId"), _string_field(data, "deviceId")
        )
        return web.json_response({"success": True})

    async def _handle_reset(self, request: web.Request) -> web.Response:
        """Unpair a device from the server, whatever state it is in."""
        data = await _read_json(request)
        pair = self.relay.reset_device(_string_field(data, "deviceId"))

        message = "Device unpaired" if pair is not None else "Device reset"
        return web.json_response({"success": True, "message": message})

    # =========================================================================
    # Messaging
    # =========================================================================

    async def _handle_send(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        kind = _string_field(data, "kind") or None
        message = self.relay.send(
            _string_field(data, "pairId"),
            _string_field(data, "deviceId"),
            _string_field(data, "content"),
            kind=kind,
        )

        return web.json_response({
            "messageId": message.id,
            "timestamp": iso_timestamp(message.created_at),
        })

    async def _handle_poll(self, request: web.Request) -> web.Response:
        """Return all messages and acknowledge the caller's incoming ones."""
        query = request.query
        result = self.relay.poll_and_acknowledge(
            _string_field(query, "pairId"), _string_field(query, "deviceId")
        )
        return web.json_response(result.to_dict())

    async def _handle_typing(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        is_typing = data.get("isTyping", False)
        if not isinstance(is_typing, bool):
            raise ValidationError("Invalid isTyping")

        self.relay.set_typing(
            _string_field(data, "pairId"),
            _string_field(data, "deviceId"),
            is_typing,
        )
        return web.json_response({"success": True})

    async def _handle_read(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        message_ids = data.get("messageIds")
        if not isinstance(message_ids, list) or not all(
            isinstance(m, str) for m in message_ids
        ):
            raise ValidationError("Pair ID, device ID, and message IDs required")

        self.relay.mark_read(
            _string_field(data, "pairId"),
            _string_field(data, "deviceId"),
            message_ids,
        )
        return web.json_response({"success": True})

    async def _handle_clear(self, request: web.Request) -> web.Response:
        """Permanently delete all messages for a pair."""
        data = await _read_json(request)
        self.relay.clear(
            _string_field(data, "pairId"), _string_field(data, "deviceId")
        )
        return web.json_response({"success": True})

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def port(self) -> int:
        """Port the server is bound to (0 before start)."""
        return self._port

    async def start(self, host: str = "0.0.0.0", port: int = 5000) -> None:
        """Start serving on host:port."""
        self._stopped.clear()
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        server = self._site._server
        if server is not None and server.sockets:
            self._port = server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay server running on {host}:{self._port}")
        logger.info(f"Health check: http://localhost:{self._port}{self.api_prefix}/health")

    async def run_forever(self) -> None:
        """Block until stop() is called."""
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop serving and release the socket."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("Relay server stopped")
        self._stopped.set()
