"""scrapegen: compile PodMonitor resources into Prometheus scrape configs."""

__version__ = "0.1.0"
