"""Fetch kubelet stats, pods and cAdvisor data and group them into raw metric groups."""

__version__ = "0.1.0"