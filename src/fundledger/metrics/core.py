"""Core metrics helpers for fundledger.

Starts the Prometheus HTTP exporter while tolerating bind failures, so a
ledger process keeps running when the port is taken (tests, local demos).
"""

import logging
from typing import Optional

from prometheus_client import start_http_server


def start_server_safe(port: int) -> Optional[int]:
    """Start Prometheus metrics server; return port or None if failed."""
    if port <= 0:
        logging.info("Prometheus metrics server disabled (port=%s)", port)
        return None
    try:
        start_http_server(port)
        logging.info(f"Prometheus metrics server started on :{port}")
        return port
    except OSError as e:
        logging.warning(f"Failed to start Prometheus server on :{port}: {e}")
        return None
