"""
Metrics collector menggunakan Prometheus.
File ini mengumpulkan data consensus per node seperti
jumlah votes, broadcasts, round, dan decisions.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest
import time
import psutil


class MetricsCollector:
    """
    Class untuk mengumpulkan metrics sistem.
    Menggunakan Prometheus format untuk monitoring.
    Semua metric consensus di-label dengan node_id karena
    beberapa nodes bisa jalan dalam satu process.
    """

    def __init__(self):
        # Counter: nilai yang selalu naik (contoh: jumlah request)
        self.request_count = Counter(
            'request_total',
            'Total number of requests',
            ['method', 'endpoint']
        )

        # Histogram: distribusi nilai (contoh: response time)
        self.request_latency = Histogram(
            'request_latency_seconds',
            'Request latency in seconds',
            ['method', 'endpoint']
        )

        self.votes_received = Counter(
            'votes_received_total',
            'Votes recorded in the vote log',
            ['node_id', 'phase']
        )

        self.votes_rejected = Counter(
            'votes_rejected_total',
            'Votes dropped on ingestion',
            ['node_id', 'reason']
        )

        self.broadcasts = Counter(
            'broadcasts_total',
            'Vote broadcasts sent to peers',
            ['node_id', 'phase']
        )

        self.failed_sends = Counter(
            'failed_sends_total',
            'Vote deliveries that failed',
            ['node_id']
        )

        self.decisions = Counter(
            'decisions_total',
            'Terminal decisions reached',
            ['node_id', 'value']
        )

        self.rounds_aborted = Counter(
            'rounds_aborted_total',
            'Engines that hit the round cap without deciding',
            ['node_id']
        )

        # Gauge: nilai yang bisa naik/turun (contoh: round saat ini)
        self.current_round = Gauge(
            'current_round',
            'Current consensus round (k)',
            ['node_id']
        )

        # System metrics
        self.cpu_usage = Gauge('cpu_usage_percent', 'CPU usage percentage')
        self.memory_usage = Gauge('memory_usage_percent', 'Memory usage percentage')

    def record_request(self, method: str, endpoint: str, duration: float):
        """
        Record request metrics.

        Args:
            method: HTTP method (GET, POST, etc)
            endpoint: API endpoint
            duration: Request duration in seconds
        """
        self.request_count.labels(method=method, endpoint=endpoint).inc()
        self.request_latency.labels(method=method, endpoint=endpoint).observe(duration)

    def record_vote(self, node_id: int, phase: int):
        self.votes_received.labels(node_id=str(node_id), phase=str(phase)).inc()

    def record_rejected_vote(self, node_id: int, reason: str):
        self.votes_rejected.labels(node_id=str(node_id), reason=reason).inc()

    def record_broadcast(self, node_id: int, phase: int, failed: int = 0):
        """Record satu broadcast dan jumlah target yang gagal"""
        self.broadcasts.labels(node_id=str(node_id), phase=str(phase)).inc()
        if failed:
            self.failed_sends.labels(node_id=str(node_id)).inc(failed)

    def record_decision(self, node_id: int, value: int):
        self.decisions.labels(node_id=str(node_id), value=str(value)).inc()

    def record_abort(self, node_id: int):
        self.rounds_aborted.labels(node_id=str(node_id)).inc()

    def set_round(self, node_id: int, k: int):
        """Update round gauge untuk node"""
        self.current_round.labels(node_id=str(node_id)).set(k)

    def update_system_metrics(self):
        """Update CPU dan memory usage"""
        self.cpu_usage.set(psutil.cpu_percent())
        self.memory_usage.set(psutil.virtual_memory().percent)

    def get_metrics(self) -> bytes:
        """
        Export metrics dalam Prometheus format.
        Returns: Metrics data dalam bytes
        """
        self.update_system_metrics()
        return generate_latest()


# Context manager untuk measure request time
class measure_time:
    """
    Context manager untuk mengukur execution time.

    Contoh penggunaan:
        with measure_time() as timer:
            # your code here
            pass
        print(f"Execution time: {timer.elapsed}s")
    """

    def __init__(self):
        self.start_time = None
        self.elapsed = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.time() - self.start_time
        return False


# Singleton instance
metrics = MetricsCollector()
