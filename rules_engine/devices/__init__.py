"""
Rules Engine Devices Package
"""

from .device_registry import DeviceRecord, InMemoryDeviceRegistry

__all__ = ["DeviceRecord", "InMemoryDeviceRegistry"]
