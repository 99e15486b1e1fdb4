"""Grow EBS volumes and their filesystems before they run full."""

__version__ = "1.0"
