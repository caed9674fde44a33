"""
Healthwatch - A process health supervisor.

Periodically probes a fixed set of long-running services, restarts the ones
that are down, and keeps restart history and health status across its own
restarts.
"""

__version__ = "0.1.0"
