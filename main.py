from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest  # Prometheus metrics
from pydantic import BaseModel, Field

from auth.authenticator import Authenticator
from auth.token_authenticator import TokenAuthenticator
from bridge.bridge_config import configure_logging, load_bridge_config
from bridge.bridge_host import BridgeHost, build_bridge_host
from metrics.metrics_collector import MetricsCollector, load_metric_outputs
from protocol.event_codec import encode_event
from protocol.source_interfaces import SampleSource, SurfaceSource
from stream.event_sink import Listener

logger = logging.getLogger("bridge")


class CommandRequest(BaseModel):
    arguments: Dict[str, Any] = Field(default_factory=dict)
    correlation: Optional[str] = None


async def run_metrics_with_shutdown(collector: MetricsCollector) -> None:
    """Run metrics collector with shutdown awareness"""
    try:
        await collector.collect_metrics()
    except asyncio.CancelledError:
        logger.info("Metrics collector task cancelled")
        collector.stop()
    except Exception as e:
        logger.error(f"Metrics collector error: {e}")


async def _pump_events(websocket: WebSocket, queue: asyncio.Queue, event_format: str) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(encode_event(event, event_format))


async def stream_events(
    websocket: WebSocket,
    authenticator: Authenticator,
    attach: Callable[[Listener], None],
    detach: Callable[[Optional[Listener]], None],
    event_format: str,
) -> None:
    """Attach a WebSocket as the sink listener until the client goes away"""
    if not authenticator.authenticate(websocket.query_params.get("token")):
        logger.warning("Rejected event stream connection with invalid token")
        await websocket.close(code=1008)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    listener = queue.put_nowait
    attach(listener)
    sender = asyncio.create_task(_pump_events(websocket, queue, event_format))
    try:
        # Inbound frames are ignored, receiving only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event stream client disconnected")
    finally:
        detach(listener)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


def create_app(
    config: Optional[Dict[str, Any]] = None,
    *,
    sample_source: Optional[SampleSource] = None,
    surface_source: Optional[SurfaceSource] = None,
) -> FastAPI:
    config = config if config is not None else load_bridge_config()
    configure_logging(config)
    authenticator = TokenAuthenticator(config.get("auth_token"))
    event_format = config.get("event_format", "records")

    app = FastAPI(title="Native Capability Bridge")
    app.state.config = config
    app.state.host = None
    app.state.metrics_collector = None
    app.state.background_tasks = []

    # ─────────── Startup / Shutdown ───────────
    @app.on_event("startup")
    async def _start_bridge() -> None:
        host = build_bridge_host(config, sample_source=sample_source, surface_source=surface_source)
        host.open()
        app.state.host = host

        metrics_config = config.get("metrics", {})
        collector = MetricsCollector(host.snapshot, load_metric_outputs(metrics_config.get("logger_config")),
                                     interval_s=metrics_config.get("interval_s", 10.0))
        app.state.metrics_collector = collector
        app.state.background_tasks.append(asyncio.create_task(run_metrics_with_shutdown(collector)))
        logger.info("Bridge started")

    @app.on_event("shutdown")
    async def _shutdown_bridge() -> None:
        if app.state.host is not None:
            app.state.host.close()

        # Cancel all background tasks
        tasks = app.state.background_tasks
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        tasks.clear()
        if app.state.metrics_collector is not None:
            app.state.metrics_collector.stop()
        logger.info("Bridge shut down")

    def _host() -> BridgeHost:
        if app.state.host is None:
            raise HTTPException(status_code=503, detail="Bridge not started")
        return app.state.host

    def _check_api_key(request: Request) -> None:
        if not authenticator.authenticate(request.headers.get("x-api-key")):
            raise HTTPException(status_code=403, detail="Forbidden")

    # ─────────── Control channel ───────────
    @app.post("/channel/{command}")
    async def _channel(command: str, request: Request, body: Optional[CommandRequest] = None) -> Dict[str, Any]:
        _check_api_key(request)
        body = body or CommandRequest()
        result = await _host().channel.dispatch(command, body.arguments, body.correlation)
        return result.to_dict()

    @app.get("/status")
    async def _status(request: Request) -> Dict[str, Any]:
        _check_api_key(request)
        return _host().status()

    # ─────────── Event streams ───────────
    @app.websocket("/events/health")
    async def _health_events(websocket: WebSocket) -> None:
        host = _host()
        await stream_events(websocket, authenticator, host.attach_sample_listener,
                            host.detach_sample_listener, event_format)

    @app.websocket("/events/ar")
    async def _ar_events(websocket: WebSocket) -> None:
        host = _host()
        await stream_events(websocket, authenticator, host.attach_surface_listener,
                            host.detach_surface_listener, event_format)

    # ─────────── Prometheus /metrics Endpoint ───────────
    @app.get("/metrics", response_class=PlainTextResponse)
    async def _metrics() -> str:
        return generate_latest().decode("utf-8")

    return app


# ─────────── Run Uvicorn ───────────
if __name__ == "__main__":
    server = load_bridge_config().get("server", {})
    uvicorn.run("main:create_app", factory=True, host=server.get("host", "0.0.0.0"),
                port=server.get("port", 8080), reload=False)
