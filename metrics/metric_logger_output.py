from metrics.metric_output import MetricOutput
from metrics.metric import DeliveryMetric


class MetricLoggerOutput(MetricOutput):
    """Prints each snapshot on stdout"""

    def output(self, metric: DeliveryMetric):
        print(metric.to_string())
