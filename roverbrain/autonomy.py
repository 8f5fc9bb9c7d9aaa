"""Autonomous behaviour: a state machine that follows a face, then a marker."""

from __future__ import annotations

import csv
import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Mapping, Optional, TextIO

from .messages import Twist

logger = logging.getLogger(__name__)

TRACKING_MARKER = "Tracking Marker"
CONTROL_PERIOD_S = 0.05
MIN_FRONT_DISTANCE = 0.1

STATE_HEADER = ["timestamp", "state"]
SLAM_HEADER = ["timestamp", "px", "py", "pz", "qx", "qy", "qz", "qw"]

_TUNABLE = ("follow_distance", "safe_distance", "max_linear_speed", "max_angular_speed")


class State(IntEnum):
    """States of the autonomous behaviour."""

    SEARCH_FACE = 0
    FOLLOW_FACE = 1
    SEARCH_MARKER = 2
    FOLLOW_MARKER = 3
    AVOID_OBSTACLE = 4


@dataclass(frozen=True)
class VisionResult:
    """What the vision system reports about the current frame."""

    status: str = ""
    frame_number: int = 0
    fps: float = 0.0
    person_name: str = ""
    confidence: float = 0.0
    face_x: float = 0.0
    face_y: float = 0.0
    face_width: float = 0.0
    face_height: float = 0.0
    marker_center_x: float = 0.0
    marker_center_y: float = 0.0


@dataclass(frozen=True)
class Pose:
    """A position and an orientation quaternion."""

    px: float = 0.0
    py: float = 0.0
    pz: float = 0.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0
    qw: float = 1.0


@dataclass(frozen=True)
class AutonomyConfig:
    """Parameters of the autonomous node."""

    vision_topic: str = "/vision/result"
    sensor_front_topic: str = "/sensors/front"
    sensor_fl_topic: str = "/sensors/front_left"
    sensor_fr_topic: str = "/sensors/front_right"
    sensor_rear_topic: str = "/sensors/rear"
    cmd_vel_topic: str = "/cmd_vel"
    slam_pose_topic: str = "/orb_slam2/pose"
    frame_width: int = 640
    follow_distance: float = 50.0
    safe_distance: float = 30.0
    max_linear_speed: float = 0.5
    max_angular_speed: float = 1.0

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "AutonomyConfig":
        """Build a config from named parameters, using defaults for missing ones."""
        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name in params:
                values[f.name] = type(f.default)(params[f.name])
        return cls(**values)


def state_to_string(state: State) -> str:
    """Name of a state as written to the state log."""
    try:
        return State(state).name
    except ValueError:
        return "UNKNOWN"


def next_state(
    state: State,
    front_dist: float,
    safe_distance: float,
    has_vision: bool,
    status: str,
) -> State:
    """The state that follows ``state`` given the current observations."""
    tracking = has_vision and status == TRACKING_MARKER
    if front_dist < safe_distance:
        return State.AVOID_OBSTACLE
    if state is State.AVOID_OBSTACLE:
        return State.SEARCH_FACE
    if state is State.SEARCH_FACE and has_vision:
        return State.FOLLOW_FACE
    if state is State.FOLLOW_FACE and tracking:
        return State.FOLLOW_MARKER
    if state is State.FOLLOW_MARKER and not tracking:
        return State.SEARCH_MARKER
    if state is State.SEARCH_MARKER and tracking:
        return State.FOLLOW_MARKER
    return state


def _clamp(value: float, low: float, high: float) -> float:
    if value < low:
        return low
    if high < value:
        return high
    return value


class AutonomousNode:
    """Combines vision and distance readings into velocity commands."""

    def __init__(self, config: AutonomyConfig, log_dir: Optional[Path] = None) -> None:
        self.config = config
        self.log_dir = (
            Path(log_dir) if log_dir is not None else Path.cwd() / "logs" / "autonomous"
        )
        self.state = State.SEARCH_FACE
        self.has_vision = False
        self.last_vision = VisionResult()
        self.has_slam_pose = False
        self.last_pose = Pose()
        self.front_dist = math.inf
        self.fl_dist = math.inf
        self.fr_dist = math.inf
        self.rear_dist = math.inf
        self._state_file: Optional[TextIO] = None
        self._slam_file: Optional[TextIO] = None
        self._state_writer: Any = None
        self._slam_writer: Any = None
        self._initialized = False

    def initialize(self) -> None:
        """Open the state and SLAM logs."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._state_file = open(self.log_dir / "state_log.csv", "w", newline="")
            self._slam_file = open(self.log_dir / "slam_log.csv", "w", newline="")
        except OSError:
            logger.warning("Failed to open log files in '%s'", self.log_dir)
            self._close_files()
        else:
            self._state_writer = csv.writer(self._state_file, lineterminator="\n")
            self._slam_writer = csv.writer(self._slam_file, lineterminator="\n")
            self._state_writer.writerow(STATE_HEADER)
            self._slam_writer.writerow(SLAM_HEADER)
        self._initialized = True
        logger.info("[AutonomousNode] initialized (frame_width=%d)", self.config.frame_width)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("AutonomousNode is not initialized")

    def _command(self) -> Twist:
        cfg = self.config
        half_width = cfg.frame_width * 0.5
        if self.state is State.AVOID_OBSTACLE:
            turn = cfg.max_angular_speed if self.fl_dist > self.fr_dist else -cfg.max_angular_speed
            return Twist(0.0, turn)
        if self.state in (State.SEARCH_FACE, State.SEARCH_MARKER):
            return Twist(0.0, cfg.max_angular_speed / 2.0)
        if self.state is State.FOLLOW_FACE:
            vision = self.last_vision
            err_x = vision.face_x + vision.face_width * 0.5 - half_width
            angular = -(err_x / half_width) * cfg.max_angular_speed
            err_d = cfg.follow_distance / max(MIN_FRONT_DISTANCE, self.front_dist)
            return Twist(_clamp(err_d, 0.0, cfg.max_linear_speed), angular)
        err_x = self.last_vision.marker_center_x - half_width
        angular = -(err_x / half_width) * cfg.max_angular_speed
        err_d = self.front_dist - cfg.follow_distance
        linear = _clamp(err_d / cfg.follow_distance, 0.0, cfg.max_linear_speed)
        return Twist(linear, angular)

    def spin(self, now: float) -> Twist:
        """Run one control cycle at time ``now`` and return the velocity command."""
        self._require_initialized()
        new_state = next_state(
            self.state,
            self.front_dist,
            self.config.safe_distance,
            self.has_vision,
            self.last_vision.status,
        )
        if new_state is not self.state:
            if self._state_writer is not None:
                self._state_writer.writerow([now, state_to_string(new_state)])
            self.state = new_state
        return self._command()

    def set_parameters(self, params: Mapping[str, Any]) -> bool:
        """Change tunable parameters at run time; others are ignored."""
        changes = {name: float(params[name]) for name in _TUNABLE if name in params}
        self.config = dataclasses.replace(self.config, **changes)
        cfg = self.config
        logger.info(
            "[Params changed] follow=%.1f safe=%.1f lin=%.2f ang=%.2f",
            cfg.follow_distance, cfg.safe_distance, cfg.max_linear_speed, cfg.max_angular_speed,
        )
        return True

    def on_vision(self, result: VisionResult) -> None:
        """Accept a vision result."""
        self.last_vision = result
        self.has_vision = True

    def on_front(self, distance: float) -> None:
        self.front_dist = float(distance)

    def on_front_left(self, distance: float) -> None:
        self.fl_dist = float(distance)

    def on_front_right(self, distance: float) -> None:
        self.fr_dist = float(distance)

    def on_rear(self, distance: float) -> None:
        self.rear_dist = float(distance)

    def on_slam_pose(self, pose: Pose, stamp: float) -> None:
        """Record a SLAM pose stamped at ``stamp`` seconds."""
        self._require_initialized()
        self.has_slam_pose = True
        self.last_pose = pose
        if self._slam_writer is not None:
            self._slam_writer.writerow(
                [stamp, pose.px, pose.py, pose.pz, pose.qx, pose.qy, pose.qz, pose.qw]
            )

    def _close_files(self) -> None:
        for handle in (self._state_file, self._slam_file):
            if handle is not None:
                handle.close()
        self._state_file = self._slam_file = None
        self._state_writer = self._slam_writer = None

    def close(self) -> None:
        """Close the logs."""
        self._close_files()

    def __enter__(self) -> "AutonomousNode":
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()