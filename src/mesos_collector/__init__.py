"""Metrics collection agent for Mesos agents and their workloads."""

__version__ = "0.1.0"
