"""
Device Registry

Tracks which devices exist and whether they are still reporting.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional


logger = logging.getLogger("HomeGuardDevices")


@dataclass
class DeviceRecord:
    """A registered camera, sensor, light or speaker."""
    device_id: str
    name: str = ""
    device_type: str = "sensor"
    capabilities: List[str] = field(default_factory=list)
    monitoring: bool = True
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "device_type": self.device_type,
            "capabilities": list(self.capabilities),
            "monitoring": self.monitoring,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None
        }


class InMemoryDeviceRegistry:
    """
    Device validity and liveness for device-typed conditions.

    A device is alive when it is being monitored and has sent a heartbeat
    within ``liveness_seconds``.
    """

    def __init__(self, liveness_seconds: float = 300.0):
        self.liveness_seconds = liveness_seconds
        self._devices: Dict[str, DeviceRecord] = {}
        self._lock = threading.Lock()

    def register(
        self,
        device_id: str,
        name: str = "",
        device_type: str = "sensor",
        capabilities: Optional[List[str]] = None
    ) -> DeviceRecord:
        """Register a device, replacing any previous record with the same id."""
        record = DeviceRecord(
            device_id=device_id,
            name=name or device_id,
            device_type=device_type,
            capabilities=list(capabilities or []),
            last_seen=datetime.now(timezone.utc)
        )
        with self._lock:
            self._devices[device_id] = record
        logger.info(f"Registered device: {device_id} ({device_type})")
        return record

    def unregister(self, device_id: str) -> bool:
        with self._lock:
            removed = self._devices.pop(device_id, None)
        if removed:
            logger.info(f"Unregistered device: {device_id}")
        return removed is not None

    def heartbeat(self, device_id: str, at: Optional[datetime] = None) -> bool:
        """
        Record that a device reported in.

        Returns:
            False when the device is not registered
        """
        with self._lock:
            record = self._devices.get(device_id)
            if record is None:
                return False
            record.last_seen = at or datetime.now(timezone.utc)
        return True

    def set_monitoring(self, device_id: str, monitoring: bool) -> bool:
        with self._lock:
            record = self._devices.get(device_id)
            if record is None:
                return False
            record.monitoring = monitoring
        return True

    def is_known(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def is_alive(self, device_id: str, now: Optional[datetime] = None) -> bool:
        with self._lock:
            record = self._devices.get(device_id)
            if record is None or not record.monitoring or record.last_seen is None:
                return False
            last_seen = record.last_seen
        now = now or datetime.now(timezone.utc)
        return now - last_seen <= timedelta(seconds=self.liveness_seconds)

    def get(self, device_id: str) -> Optional[DeviceRecord]:
        with self._lock:
            return self._devices.get(device_id)

    def list_devices(self) -> List[DeviceRecord]:
        with self._lock:
            return list(self._devices.values())
