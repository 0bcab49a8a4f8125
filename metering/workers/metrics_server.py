"""
Prometheus exposition for the Celery worker.

The worker has no web app, so quota-reset and task metrics are served from
a background HTTP thread on `worker_metrics_port`.
"""
import logging

from prometheus_client import start_http_server

logger = logging.getLogger(__name__)

_started_port = None


def start_metrics_server(port: int = 9090) -> int:
    """
    Serve the default registry on `port`. Calling again is a no-op.

    Raises:
        OSError: If the port cannot be bound
    """
    global _started_port

    if _started_port is not None:
        return _started_port

    start_http_server(port)
    _started_port = port
    logger.info(
        f"Worker metrics server started on port {port}",
        extra={"event": "worker_metrics_server_started", "port": port}
    )
    return port
