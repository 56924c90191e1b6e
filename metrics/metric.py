from datetime import datetime


class DeliveryMetric:
    """Point-in-time snapshot of the bridge delivery counters"""
    ts: datetime | None = None
    state: str | None = None
    listener: bool = False
    delivered: int = 0
    dropped: int = 0
    errors: int = 0
    placed: bool = False

    def to_string(self) -> str:
        delim = " | "
        metrics = []

        if self.ts is not None:
            metrics.append(f"ts={self.ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3]}Z")

        if self.state is not None:
            metrics.append(f"state={self.state}")

        metrics.append(f"listener={self.listener}")
        metrics.append(f"delivered={self.delivered}")
        metrics.append(f"dropped={self.dropped}")
        metrics.append(f"errors={self.errors}")
        metrics.append(f"placed={self.placed}")

        return delim.join(metrics)
