"""
OpenNMS cloud bridge.

Discovers cloud resources and collects their metrics on a schedule, then
provisions them into OpenNMS as nodes and measurements.
"""

__version__ = "0.1.0"
