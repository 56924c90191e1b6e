import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from bridge.control_channel import ControlChannel
from metrics.metric import DeliveryMetric
from placement.placement_gate import PlacementGate
from protocol.source_interfaces import SampleSource, SurfaceSource
from sources.simulated_sample_source import SimulatedSampleSource
from sources.simulated_surface_source import SimulatedSurfaceSource
from stream.event_sink import EventSink, Listener
from stream.stream_session import StreamSession

logger = logging.getLogger("bridge")


class BridgeHost:
    """Owns one stream session, one placement gate, their event sinks and the control channel.

    Everything is bound to the event loop given at construction, which is the
    delivery context for both sinks.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        sample_source: SampleSource,
        surface_source: SurfaceSource,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.config = config
        self.loop = loop or asyncio.get_running_loop()
        stream_config = config.get("stream", {})
        placement_config = config.get("placement", {})

        self.stop_on_detach = stream_config.get("stop_on_detach", False)
        self.sample_events = EventSink("health", self.loop)
        self.surface_events = EventSink("ar", self.loop)
        self.session = StreamSession(
            sample_source,
            self.sample_events,
            self.loop,
            emit_status_events=stream_config.get("emit_status_events", False),
        )
        self.gate = PlacementGate(
            surface_source,
            self.loop,
            events=self.surface_events,
            placement_timeout_s=placement_config.get("placement_timeout_s", 5.0),
            auto_place_on_first_surface=placement_config.get("auto_place_on_first_surface", False),
        )
        self.channel = ControlChannel(self.session, self.gate, aliases=config.get("command_aliases"))

    def open(self) -> None:
        self.gate.open()
        logger.info("Bridge host ready")

    def close(self) -> None:
        self.session.stop()
        self.gate.close()
        self.sample_events.detach()
        self.surface_events.detach()
        logger.info("Bridge host closed")

    # ────────────── Listener management ──────────────
    def attach_sample_listener(self, listener: Listener) -> None:
        self.sample_events.attach(listener)

    def detach_sample_listener(self, listener: Optional[Listener] = None) -> None:
        detached = self.sample_events.detach(listener)
        if detached and self.stop_on_detach:
            logger.info("Sample listener gone, stopping stream")
            self.session.stop()

    def attach_surface_listener(self, listener: Listener) -> None:
        self.surface_events.attach(listener)

    def detach_surface_listener(self, listener: Optional[Listener] = None) -> None:
        self.surface_events.detach(listener)

    # ────────────── Introspection ──────────────
    def status(self) -> Dict[str, Any]:
        return {
            "stream": {
                "state": self.session.state.value,
                "subscribed": self.session.is_subscribed,
                "listener": self.sample_events.has_listener,
            },
            "placement": {
                "state": self.gate.state.value,
                "surfaces": len(self.gate.surfaces()),
                "listener": self.surface_events.has_listener,
            },
            "commands": self.channel.commands(),
        }

    def snapshot(self) -> DeliveryMetric:
        metric = DeliveryMetric()
        metric.ts = datetime.now()
        metric.state = self.session.state.value
        metric.listener = self.sample_events.has_listener
        metric.delivered = self.sample_events.delivered
        metric.dropped = self.sample_events.dropped
        metric.errors = self.sample_events.errors
        metric.placed = self.gate.placed
        return metric


def build_bridge_host(config: Dict[str, Any], *, sample_source: Optional[SampleSource] = None,
                      surface_source: Optional[SurfaceSource] = None,
                      loop: Optional[asyncio.AbstractEventLoop] = None) -> BridgeHost:
    """Wire a host, falling back to the simulated sources described in the config"""
    simulation = config.get("simulation", {})
    return BridgeHost(
        config,
        sample_source or SimulatedSampleSource.from_config(simulation),
        surface_source or SimulatedSurfaceSource.from_config(simulation),
        loop=loop,
    )
