from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os

import uvicorn
import websockets
from rich import print  # rich for coloured output
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from bridge.bridge_config import CONFIG_ENV, configure_logging, load_bridge_config
from bridge.bridge_host import build_bridge_host
from protocol.event_codec import encode_event


def _format_event(data: dict) -> str:
    if "code" in data:
        return f"[red]✖ {data['code']}[/] {data.get('message', '')}"
    if "status" in data:
        return f"[yellow]● {data['status']}[/]"
    if "event" in data:
        return f"[magenta]◆ {data['event']}[/] {json.dumps({k: v for k, v in data.items() if k != 'event'})}"
    return f"[cyan]♥ {data}[/]"


async def listen(uri: str, token: str | None, limit: int | None) -> None:
    """Print events pushed on a bridge event stream"""
    if token:
        uri = f"{uri}?token={token}"
    received = 0
    try:
        async with websockets.connect(uri) as websocket:
            print(f"[green]✅ Connected to {uri}[/]")
            async for message in websocket:
                print(_format_event(json.loads(message)))
                received += 1
                if limit is not None and received >= limit:
                    break
    except (ConnectionClosedOK, ConnectionClosedError) as e:
        print(f"[yellow]Connection closed: {e}[/]")


async def demo(config: dict, seconds: float) -> None:
    """Run the bridge in-process against the simulated sources"""
    host = build_bridge_host(config)
    host.open()
    event_format = config.get("event_format", "records")
    host.attach_sample_listener(lambda event: print(_format_event(encode_event(event, event_format))))
    host.attach_surface_listener(lambda event: print(_format_event(encode_event(event, event_format))))

    result = await host.channel.dispatch("start_stream")
    print(f"start_stream → {result.to_dict()}")

    placed = False
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while loop.time() < deadline:
        await asyncio.sleep(0.5)
        surfaces = host.gate.surfaces()
        if surfaces and not placed:
            surface = surfaces[0]
            result = await host.channel.dispatch(
                "place_object", {"surface": surface.id, "point": surface.center.as_list()}
            )
            print(f"place_object → {result.to_dict()}")
            placed = result.ok

    result = await host.channel.dispatch("stop_stream")
    print(f"stop_stream → {result.to_dict()}")
    host.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Native capability bridge")
    parser.add_argument("--config", metavar="FILE", help="Bridge config JSON (default: bridge/bridge_config.json)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/WebSocket bridge host")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    listen_parser = subparsers.add_parser("listen", help="Print events from a running bridge")
    listen_parser.add_argument("--uri", default="ws://localhost:8080/events/health", help="Event stream URI")
    listen_parser.add_argument("--token", help="Authentication token")
    listen_parser.add_argument("--limit", type=int, help="Stop after this many events")

    demo_parser = subparsers.add_parser("demo", help="Run an in-process session against simulated sources")
    demo_parser.add_argument("--seconds", type=float, default=10.0, help="Demo duration")

    args = parser.parse_args()
    config = load_bridge_config(args.config)

    if args.command == "serve":
        if args.config:
            os.environ[CONFIG_ENV] = args.config
        server = config.get("server", {})
        uvicorn.run(
            "main:create_app",
            factory=True,
            host=args.host or server.get("host", "0.0.0.0"),
            port=args.port or server.get("port", 8080),
            reload=False,
        )
    elif args.command == "listen":
        logging.basicConfig(level=logging.WARNING)
        asyncio.run(listen(args.uri, args.token or config.get("auth_token") or None, args.limit))
    else:
        configure_logging(config)
        asyncio.run(demo(config, args.seconds))


if __name__ == "__main__":  # pragma: no cover
    main()
