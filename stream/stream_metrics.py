from prometheus_client import Counter, Enum, Histogram

# Samples handed to an event sink by the stream session
stream_samples_forwarded = Counter(
    "stream_samples_forwarded_total", "Samples forwarded from the sample source to the event sink"
)

# Events that reached a listener, by sink
sink_events_delivered = Counter(
    "sink_events_delivered_total", "Events delivered to the attached listener", ["sink"]
)

# Events dropped at delivery time (no listener, listener replaced, stale stream)
sink_events_dropped = Counter(
    "sink_events_dropped_total", "Events dropped instead of delivered", ["sink"]
)

# Listener callbacks that raised
sink_listener_errors = Counter(
    "sink_listener_errors_total", "Listener callbacks that raised during delivery", ["sink"]
)

# Terminal error events emitted by the stream session
stream_error_events = Counter(
    "stream_error_events_total", "Terminal error events emitted by the stream session", ["code"]
)

# Authorization continuations by outcome (granted, denied, stale)
stream_authorizations = Counter(
    "stream_authorizations_total", "Authorization continuations resolved", ["outcome"]
)

# Current session lifecycle state
stream_session_state = Enum(
    "stream_session_state", "Stream session lifecycle state",
    states=["idle", "starting", "active", "stopping"],
)

# Hand-off delay between emit and listener delivery
sink_delivery_delay_ms = Histogram(
    "sink_delivery_delay_ms",
    "Delay (ms) between emit and delivery on the delivery context",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 50, 100, 500),
)
