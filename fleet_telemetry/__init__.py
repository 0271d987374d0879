"""
Fleet telemetry service: live vehicle sessions, compliance hours, daily
archival into per-vehicle timelines and advertiser rollups.
"""

__version__ = "0.1.0"
