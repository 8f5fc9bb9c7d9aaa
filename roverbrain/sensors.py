"""Sensor node: reads distance sensors and an IMU, logs and diagnoses them."""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TextIO

from .messages import DiagnosticArray, DiagnosticLevel, DiagnosticStatus

logger = logging.getLogger(__name__)

TOPIC_BASE = "/sensors"
MAX_VALID_DISTANCE = 200.0
SENSOR_COUNT = 4

DISTANCE_HEADER = ["timestamp", "front", "front_left", "front_right", "rear"]
IMU_HEADER = ["timestamp", "angleX", "angleY", "angleZ"]


class SensorPosition(IntEnum):
    """Where a distance sensor sits on the vehicle."""

    FRONT = 0
    FRONT_LEFT = 1
    FRONT_RIGHT = 2
    REAR = 3

    @property
    def topic(self) -> str:
        """Topic on which this sensor's distance is published."""
        return f"{TOPIC_BASE}/{self.name.lower()}"


class DistanceSensor:
    """An ultrasonic distance sensor driven through a reader callable."""

    def __init__(
        self,
        trig_pin: int,
        echo_pin: int,
        position: SensorPosition,
        reader: Callable[[], float],
    ) -> None:
        self.trig_pin = trig_pin
        self.echo_pin = echo_pin
        self.position = position
        self._reader = reader

    def read_distance(self) -> float:
        """Take one distance measurement."""
        return float(self._reader())


class AngleSensor:
    """An inertial sensor reporting three orientation angles."""

    def __init__(
        self,
        sampler: Callable[[], tuple[float, float, float]],
        address: int = 0x68,
        probe: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.address = address
        self._sampler = sampler
        self._probe = probe
        self._angles: tuple[float, float, float] = (math.nan, math.nan, math.nan)

    def begin(self) -> bool:
        """Bring the device up; return whether it answered."""
        return True if self._probe is None else bool(self._probe())

    def update(self) -> None:
        """Refresh the stored angles from the device."""
        x, y, z = self._sampler()
        self._angles = (float(x), float(y), float(z))

    def angles(self) -> tuple[float, float, float]:
        """Angles from the last update, NaN before the first."""
        return self._angles


@dataclass(frozen=True)
class SensorsConfig:
    """Parameters of the sensor node."""

    trig_pins: tuple[int, ...] = (17, 27, 22, 5)
    echo_pins: tuple[int, ...] = (18, 23, 24, 6)
    imu_i2c_address: int = 0x68
    read_rate: float = 10.0

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "SensorsConfig":
        """Build a config from named parameters, using defaults for missing ones."""
        defaults = cls()
        return cls(
            trig_pins=tuple(int(p) for p in params.get("trig_pins", defaults.trig_pins)),
            echo_pins=tuple(int(p) for p in params.get("echo_pins", defaults.echo_pins)),
            imu_i2c_address=int(params.get("imu_i2c_address", defaults.imu_i2c_address)),
            read_rate=float(params.get("read_rate", defaults.read_rate)),
        )


@dataclass(frozen=True)
class SensorReading:
    """Everything produced by one read cycle."""

    timestamp: float
    distances: dict[SensorPosition, float]
    angles: tuple[float, float, float]
    diagnostics: DiagnosticArray = field(default_factory=DiagnosticArray)


class SensorInitError(RuntimeError):
    """Raised when the sensor hardware cannot be brought up."""


def distance_diagnostic(index: int, distance: float) -> DiagnosticStatus:
    """Diagnose one distance reading."""
    name = f"UltrasonicSensor_{index}"
    hardware_id = f"HC-SR04_{index}"
    if distance <= 0 or distance > MAX_VALID_DISTANCE:
        return DiagnosticStatus(
            name, hardware_id, DiagnosticLevel.ERROR,
            f"Invalid distance reading: {distance:f}",
        )
    return DiagnosticStatus(
        name, hardware_id, DiagnosticLevel.OK, f"Distance OK: {distance:f}"
    )


def imu_diagnostic(x: float, y: float) -> DiagnosticStatus:
    """Diagnose an IMU reading by its first two angles."""
    if math.isnan(x) or math.isnan(y):
        return DiagnosticStatus("IMUSensor", "MPU6050", DiagnosticLevel.ERROR, "IMU returned NaN")
    return DiagnosticStatus("IMUSensor", "MPU6050", DiagnosticLevel.OK, "IMU OK")


SensorFactory = Callable[[int, int, SensorPosition], DistanceSensor]


class SensorsNode:
    """Reads all sensors each cycle, logs them to CSV and reports diagnostics."""

    def __init__(
        self,
        config: SensorsConfig,
        sensor_factory: SensorFactory,
        imu: AngleSensor,
        log_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self._sensor_factory = sensor_factory
        self._imu = imu
        self.log_dir = Path(log_dir) if log_dir is not None else Path.cwd() / "logs" / "sensors"
        self._sensors: list[DistanceSensor] = []
        self._dist_file: Optional[TextIO] = None
        self._imu_file: Optional[TextIO] = None
        self._dist_writer: Any = None
        self._imu_writer: Any = None
        self._initialized = False

    @property
    def sensors(self) -> tuple[DistanceSensor, ...]:
        return tuple(self._sensors)

    def _build_sensors(self) -> list[DistanceSensor]:
        trig, echo = self.config.trig_pins, self.config.echo_pins
        if len(trig) != SENSOR_COUNT or len(echo) != SENSOR_COUNT:
            logger.warning(
                "Expected %d trig and %d echo pins, got %d and %d",
                SENSOR_COUNT, SENSOR_COUNT, len(trig), len(echo),
            )
            return []
        return [
            self._sensor_factory(t, e, position)
            for position, t, e in zip(SensorPosition, trig, echo)
        ]

    def initialize(self) -> None:
        """Create the sensors, start the IMU and open the CSV logs."""
        self._sensors = self._build_sensors()
        if not self._imu.begin():
            raise SensorInitError("Failed to initialize IMU sensor")

        self.log_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._dist_file = open(self.log_dir / "distances.csv", "w", newline="")
            self._imu_file = open(self.log_dir / "imu.csv", "w", newline="")
        except OSError:
            logger.warning("Failed to open log files in '%s'", self.log_dir)
            self._close_files()
        else:
            self._dist_writer = csv.writer(self._dist_file, lineterminator="\n")
            self._imu_writer = csv.writer(self._imu_file, lineterminator="\n")
            self._dist_writer.writerow(DISTANCE_HEADER)
            self._imu_writer.writerow(IMU_HEADER)

        self._initialized = True
        logger.info("SensorsNode initialized (read_rate=%.1f Hz)", self.config.read_rate)

    def read_sensors(self, now: float) -> SensorReading:
        """Run one read cycle at time ``now`` (seconds)."""
        if not self._initialized:
            raise RuntimeError("SensorsNode is not initialized")

        distances: dict[SensorPosition, float] = {}
        statuses: list[DiagnosticStatus] = []
        for position, sensor in zip(SensorPosition, self._sensors):
            distance = sensor.read_distance()
            distances[position] = distance
            statuses.append(distance_diagnostic(int(position), distance))

        self._imu.update()
        x, y, z = self._imu.angles()
        statuses.append(imu_diagnostic(x, y))

        if self._dist_writer is not None:
            self._dist_writer.writerow([now, *distances.values()])
        if self._imu_writer is not None:
            self._imu_writer.writerow([now, x, y, z])

        return SensorReading(now, distances, (x, y, z), DiagnosticArray(now, statuses))

    def _close_files(self) -> None:
        for handle in (self._dist_file, self._imu_file):
            if handle is not None:
                handle.close()
        self._dist_file = self._imu_file = None
        self._dist_writer = self._imu_writer = None

    def close(self) -> None:
        """Close the CSV logs."""
        self._close_files()

    def __enter__(self) -> "SensorsNode":
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()