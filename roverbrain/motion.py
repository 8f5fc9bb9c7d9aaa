"""Motion node: turns velocity commands into motor PWM and steering."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TextIO

from .messages import DiagnosticArray, DiagnosticLevel, DiagnosticStatus, Twist

logger = logging.getLogger(__name__)

DIAGNOSTICS_TOPIC = "/motion/diagnostics"
PINS_PER_MOTOR = 3
EXPECTED_WHEEL_PINS = 12
STEERING_DEADBAND = 0.1
PWM_LIMIT = 100

COMMAND_HEADER = ["timestamp", "linear_x", "angular_z"]
STATE_HEADER = ["timestamp", "desired_linear", "desired_angular", "current_linear", "pwm"]


class Direction(Enum):
    """Rotation direction of a wheel motor."""

    STOP = "stop"
    FORWARD = "forward"
    BACKWARD = "backward"


class Turn(Enum):
    """Position of the steering servo."""

    LEFT = "left"
    RIGHT = "right"
    STRAIGHT = "straight"


class MotorDriver:
    """A wheel motor behind an H-bridge with two direction pins and an enable pin."""

    def __init__(
        self,
        pin_a: int,
        pin_b: int,
        pin_enable: int,
        output: Optional[Callable[[Direction, int], None]] = None,
    ) -> None:
        self.pins = (pin_a, pin_b, pin_enable)
        self._output = output
        self.direction = Direction.STOP
        self.speed = 0

    def _emit(self) -> None:
        if self._output is not None:
            self._output(self.direction, self.speed)

    def set_direction(self, direction: Direction) -> None:
        """Set the rotation direction."""
        self.direction = Direction(direction)
        self._emit()

    def set_speed(self, speed: int) -> None:
        """Set the PWM duty, 0 to 100."""
        speed = int(speed)
        if not 0 <= speed <= PWM_LIMIT:
            raise ValueError(f"speed must be between 0 and {PWM_LIMIT}, got {speed}")
        self.speed = speed
        self._emit()


class SteeringServo:
    """The steering servo on a single control pin."""

    def __init__(self, pin: int, output: Optional[Callable[[Turn], None]] = None) -> None:
        self.pin = pin
        self._output = output
        self.position = Turn.STRAIGHT

    def turn(self, turn: Turn) -> None:
        """Move the wheels to the given position."""
        self.position = Turn(turn)
        if self._output is not None:
            self._output(self.position)


@dataclass(frozen=True)
class MotionConfig:
    """Parameters of the motion node."""

    cmd_vel_topic: str = "/cmd_vel"
    control_rate: float = 10.0
    cmd_timeout: float = 1.0
    max_speed: float = 1.0
    max_accel: float = 0.5
    wheel_pins: tuple[int, ...] = (2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13)
    servo_pin: int = 14

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "MotionConfig":
        """Build a config from named parameters, using defaults for missing ones."""
        defaults = cls()
        return cls(
            cmd_vel_topic=str(params.get("cmd_vel_topic", defaults.cmd_vel_topic)),
            control_rate=float(params.get("control_rate", defaults.control_rate)),
            cmd_timeout=float(params.get("cmd_timeout", defaults.cmd_timeout)),
            max_speed=float(params.get("max_speed", defaults.max_speed)),
            max_accel=float(params.get("max_accel", defaults.max_accel)),
            wheel_pins=tuple(int(p) for p in params.get("wheel_pins", defaults.wheel_pins)),
            servo_pin=int(params.get("servo_pin", defaults.servo_pin)),
        )


def ramp(current: float, desired: float, delta: float) -> float:
    """Move ``current`` towards ``desired`` by at most ``delta``."""
    if current < desired:
        return min(current + delta, desired)
    return max(current - delta, desired)


def compute_pwm(linear: float) -> int:
    """PWM duty for a linear speed, clamped to [-100, 100] and truncated."""
    return int(max(-100.0, min(100.0, linear * 100.0)))


def steering_for(angular: float) -> Turn:
    """Steering position for a yaw-rate command."""
    if angular > STEERING_DEADBAND:
        return Turn.LEFT
    if angular < -STEERING_DEADBAND:
        return Turn.RIGHT
    return Turn.STRAIGHT


MotorFactory = Callable[[int, int, int], MotorDriver]
ServoFactory = Callable[[int], SteeringServo]


class MotionNode:
    """Ramps commanded speed, drives the motors and steering, and reports status."""

    def __init__(
        self,
        config: MotionConfig,
        motor_factory: MotorFactory = MotorDriver,
        servo_factory: ServoFactory = SteeringServo,
        log_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self._motor_factory = motor_factory
        self._servo_factory = servo_factory
        self.log_dir = Path(log_dir) if log_dir is not None else Path.cwd() / "logs" / "motion"
        self.motors: list[MotorDriver] = []
        self.servo: Optional[SteeringServo] = None
        self.last_cmd_time = 0.0
        self.emergency_stop = False
        self.desired_linear = 0.0
        self.desired_angular = 0.0
        self.current_linear = 0.0
        self.last_pwm = 0
        self._cmd_file: Optional[TextIO] = None
        self._state_file: Optional[TextIO] = None
        self._cmd_writer: Any = None
        self._state_writer: Any = None
        self._initialized = False

    def _build_hardware(self) -> None:
        pins = self.config.wheel_pins
        if len(pins) == EXPECTED_WHEEL_PINS:
            groups = zip(*[iter(pins)] * PINS_PER_MOTOR)
            self.motors = [self._motor_factory(a, b, e) for a, b, e in groups]
        else:
            logger.warning("Expected %d wheel pins, got %d", EXPECTED_WHEEL_PINS, len(pins))
            self.motors = []
        self.servo = self._servo_factory(self.config.servo_pin)

    def _open_logs(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._cmd_file = open(self.log_dir / "commands.csv", "w", newline="")
            self._state_file = open(self.log_dir / "state.csv", "w", newline="")
        except OSError:
            logger.warning("Failed to open log files in '%s'", self.log_dir)
            self._close_files()
            return
        self._cmd_writer = csv.writer(self._cmd_file, lineterminator="\n")
        self._state_writer = csv.writer(self._state_file, lineterminator="\n")
        self._cmd_writer.writerow(COMMAND_HEADER)
        self._state_writer.writerow(STATE_HEADER)

    def initialize(self, now: float) -> None:
        """Create the hardware, open the CSV logs and reset the state at time ``now``."""
        self._build_hardware()
        self._open_logs()
        self.last_cmd_time = now
        self.emergency_stop = False
        self.desired_linear = 0.0
        self.desired_angular = 0.0
        self.current_linear = 0.0
        self._initialized = True
        logger.info("MotionNode initialized, listening on '%s'", self.config.cmd_vel_topic)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("MotionNode is not initialized")

    def on_cmd_vel(self, twist: Twist, now: float) -> None:
        """Accept a velocity command received at time ``now``."""
        self._require_initialized()
        self.last_cmd_time = now
        limit = self.config.max_speed
        self.desired_linear = max(-limit, min(limit, twist.linear_x))
        self.desired_angular = twist.angular_z
        if self._cmd_writer is not None:
            self._cmd_writer.writerow([now, twist.linear_x, twist.angular_z])

    def set_emergency_stop(self, engaged: bool) -> str:
        """Engage or release the emergency stop; return the status message."""
        self._require_initialized()
        self.emergency_stop = bool(engaged)
        if self.emergency_stop:
            self.stop_motors()
            return "Emergency stop engaged"
        return "Emergency stop released"

    def stop_motors(self) -> None:
        """Stop every motor and centre the steering."""
        for motor in self.motors:
            motor.set_direction(Direction.STOP)
            motor.set_speed(0)
        if self.servo is not None:
            self.servo.turn(Turn.STRAIGHT)

    def _drive(self, pwm: int) -> None:
        for motor in self.motors:
            if self.emergency_stop or pwm == 0:
                motor.set_direction(Direction.STOP)
                motor.set_speed(0)
            elif pwm > 0:
                motor.set_direction(Direction.FORWARD)
                motor.set_speed(pwm)
            else:
                motor.set_direction(Direction.BACKWARD)
                motor.set_speed(-pwm)

    def spin(self, now: float) -> DiagnosticArray:
        """Run one control cycle at time ``now`` and return its diagnostics."""
        self._require_initialized()
        if now - self.last_cmd_time > self.config.cmd_timeout:
            self.desired_linear = 0.0
            self.desired_angular = 0.0

        delta = self.config.max_accel / self.config.control_rate
        self.current_linear = ramp(self.current_linear, self.desired_linear, delta)

        pwm = compute_pwm(self.current_linear)
        self.last_pwm = pwm
        self._drive(pwm)

        if not self.emergency_stop and self.servo is not None:
            self.servo.turn(steering_for(self.desired_angular))

        if self._state_writer is not None:
            self._state_writer.writerow(
                [now, self.desired_linear, self.desired_angular, self.current_linear, pwm]
            )

        if self.emergency_stop:
            status = DiagnosticStatus(
                "MotionNode", "motors_servo", DiagnosticLevel.WARN, "Emergency stop engaged"
            )
        else:
            status = DiagnosticStatus(
                "MotionNode", "motors_servo", DiagnosticLevel.OK, "Operating normally"
            )
        return DiagnosticArray(now, [status])

    def _close_files(self) -> None:
        for handle in (self._cmd_file, self._state_file):
            if handle is not None:
                handle.close()
        self._cmd_file = self._state_file = None
        self._cmd_writer = self._state_writer = None

    def close(self) -> None:
        """Close the CSV logs."""
        self._close_files()

    def __enter__(self) -> "MotionNode":
        if not self._initialized:
            self.initialize(0.0)
        return self

    def __exit__(self, *args: object) -> None:
        self.close()