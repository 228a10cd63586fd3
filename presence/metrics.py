"""
Prometheus metrics for the presence service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os


class Metrics:
    """
    Centralized metrics for the presence service.
    """

    def __init__(self, service_name: str = "presence", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )
        self.http_requests_active.labels(service=service_name).set(0)

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Business Metrics
        self.events_registered_total = Counter(
            "presence_events_registered_total",
            "Events registered on the ledger and stored",
            registry=self.registry,
        )

        self.orphaned_ledger_events_total = Counter(
            "presence_orphaned_ledger_events_total",
            "Ledger events created whose local record could not be stored",
            registry=self.registry,
        )

        self.claims_total = Counter(
            "presence_claims_total",
            "Claim attempts by final outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.ledger_transactions_total = Counter(
            "presence_ledger_transactions_total",
            "Relayer transactions by operation and outcome",
            ["operation", "outcome"],
            registry=self.registry,
        )

        self.ledger_finality_seconds = Histogram(
            "presence_ledger_finality_seconds",
            "Time from broadcast to observed finality",
            ["operation"],
            buckets=(0.5, 1, 2, 5, 10, 15, 30, 60, 120, 300),
            registry=self.registry,
        )

        self.ledger_in_flight = Gauge(
            "presence_ledger_in_flight_transactions",
            "Relayer transactions broadcast but not yet final",
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_cpu_seconds = Counter(
            "process_cpu_seconds_total",
            "Total CPU time consumed by process",
            ["service"],
            registry=self.registry,
        )

        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self._last_cpu_total = 0.0
        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())

            cpu_times = process.cpu_times()
            cpu_total = cpu_times.user + cpu_times.system
            # Counter can't be set; increment by the delta since last scrape
            cpu_diff = cpu_total - self._last_cpu_total
            if cpu_diff > 0:
                self.process_cpu_seconds.labels(service=self.service_name).inc(cpu_diff)
            self._last_cpu_total = cpu_total

            memory_info = process.memory_info()
            self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)

            try:
                num_fds = process.num_fds()
                self.process_open_fds.labels(service=self.service_name).set(num_fds)
            except AttributeError:
                # num_fds() not available on all platforms
                pass

        except psutil.Error:
            pass

    def record_claim(self, outcome: str):
        """Record the final outcome of one claim attempt."""
        self.claims_total.labels(outcome=outcome).inc()
