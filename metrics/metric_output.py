from abc import ABC, abstractmethod
from metrics.metric import DeliveryMetric


class MetricOutput(ABC):

    @abstractmethod
    def output(self, metric: DeliveryMetric):
        pass

    def close(self):
        pass
