"""metricsync: Search Console and GA4 metrics synchronization engine"""

__version__ = "1.0.0"
