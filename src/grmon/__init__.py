"""grmon - MySQL group replication metrics scrapers."""

__version__ = "0.3.0"
