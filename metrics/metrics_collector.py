import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

from metrics.logger_file import MetricLoggerFile
from metrics.metric import DeliveryMetric
from metrics.metric_logger_output import MetricLoggerOutput
from metrics.metric_output import MetricOutput

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def load_metric_outputs(config_path: Optional[str | Path] = None) -> List[MetricOutput]:
    """Build the metric outputs described by a logger config file"""
    path = Path(config_path or Path(__file__).with_name("logger_config.json"))
    if not path.is_absolute() and not path.exists():
        path = PROJECT_ROOT / path
    with open(path) as f:
        log_config = json.load(f)

    outputs: List[MetricOutput] = []
    if log_config.get('log_to_console'):
        outputs.append(MetricLoggerOutput())
    file_config = log_config.get('log_file_configuration')
    if file_config:
        outputs.append(MetricLoggerFile(file_config['log_file_name'], file_config['log_file_max_size'],
                                        file_config['log_file_max_count']))
    return outputs


class MetricsCollector:
    """Periodically snapshots delivery counters and writes them to the outputs"""

    def __init__(self, snapshot: Callable[[], DeliveryMetric], outputs: List[MetricOutput],
                 interval_s: float = 10.0):
        self.snapshot = snapshot
        self.outputs = outputs
        self.interval_s = interval_s
        self.logger = logging.getLogger(__name__)
        self._running = True

    def stop(self):
        """Stop the metrics collector"""
        self._running = False
        for output in self.outputs:
            output.close()

    def collect_once(self) -> DeliveryMetric:
        metric = self.snapshot()
        for output in self.outputs:
            output.output(metric)
        return metric

    async def collect_metrics(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    self.collect_once()
            except asyncio.CancelledError:
                self.logger.info("Metrics collector cancelled")
                break
            except Exception as e:
                self.logger.error(f"Error collecting metrics: {e}", exc_info=True)
                await asyncio.sleep(1)
