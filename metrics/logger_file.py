import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler

from metrics.metric import DeliveryMetric
from metrics.metric_output import MetricOutput


class MetricLoggerFile(MetricOutput):
    def __init__(self, log_file_name: str, log_file_max_size: int, log_file_max_count: int):
        if log_file_name is None or log_file_max_size is None or log_file_max_count is None:
            raise ValueError("log_file_name, log_file_max_size, and log_file_max_count must be provided")

        Path(log_file_name).parent.mkdir(parents=True, exist_ok=True)

        # Use a unique logger name to avoid conflicts
        self.logger = logging.getLogger(f'MetricLoggerFile_{id(self)}')
        self.logger.setLevel(logging.INFO)

        # Disable propagation to prevent duplicate logging
        self.logger.propagate = False
        self.logger.handlers.clear()

        handler = RotatingFileHandler(log_file_name, maxBytes=log_file_max_size, backupCount=log_file_max_count)
        self.logger.addHandler(handler)

    def output(self, metric: DeliveryMetric):
        self.logger.info(metric.to_string())

    def close(self):
        for handler in self.logger.handlers[:]:
            handler.close()
            self.logger.removeHandler(handler)
