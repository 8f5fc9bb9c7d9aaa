import csv

import pytest

from roverbrain.messages import DiagnosticLevel, Twist
from roverbrain.motion import (
    Direction,
    MotionConfig,
    MotionNode,
    MotorDriver,
    SteeringServo,
    Turn,
    compute_pwm,
    ramp,
    steering_for,
)


@pytest.fixture
def node(tmp_path):
    n = MotionNode(MotionConfig(), log_dir=tmp_path)
    n.initialize(0.0)
    yield n
    n.close()


def test_ramp_moves_up_by_delta():
    assert ramp(0.0, 1.0, 0.25) == 0.25


def test_ramp_does_not_overshoot():
    assert ramp(0.9, 1.0, 0.25) == 1.0
    assert ramp(-0.9, -1.0, 0.25) == -1.0


def test_ramp_moves_down():
    assert ramp(1.0, 0.0, 0.25) == 0.75


def test_compute_pwm_clamps():
    assert compute_pwm(5.0) == 100
    assert compute_pwm(-5.0) == -100
    assert compute_pwm(0.0) == 0


def test_compute_pwm_sign_and_bounds():
    for linear in (-2.0, -0.3, 0.3, 0.77, 2.0):
        pwm = compute_pwm(linear)
        assert -100 <= pwm <= 100
        assert (pwm > 0) == (linear > 0)


def test_steering_for():
    assert steering_for(0.5) is Turn.LEFT
    assert steering_for(-0.5) is Turn.RIGHT
    assert steering_for(0.05) is Turn.STRAIGHT
    assert steering_for(0.1) is Turn.STRAIGHT


def test_motor_driver_records_output():
    calls = []
    motor = MotorDriver(2, 3, 4, output=lambda d, s: calls.append((d, s)))
    motor.set_direction(Direction.FORWARD)
    motor.set_speed(40)
    assert motor.pins == (2, 3, 4)
    assert calls[-1] == (Direction.FORWARD, 40)


def test_motor_driver_rejects_out_of_range():
    motor = MotorDriver(2, 3, 4)
    with pytest.raises(ValueError):
        motor.set_speed(101)
    with pytest.raises(ValueError):
        motor.set_speed(-1)


def test_servo_turn():
    seen = []
    servo = SteeringServo(14, output=seen.append)
    servo.turn(Turn.LEFT)
    assert servo.position is Turn.LEFT
    assert seen == [Turn.LEFT]


def test_config_defaults_and_mapping():
    cfg = MotionConfig.from_mapping({"max_speed": 2, "wheel_pins": [1, 2, 3]})
    assert cfg.max_speed == 2.0
    assert cfg.wheel_pins == (1, 2, 3)
    assert cfg.cmd_vel_topic == "/cmd_vel"
    assert cfg.servo_pin == 14


def test_initialize_builds_four_motors(node):
    assert len(node.motors) == 4
    assert node.motors[0].pins == (2, 3, 4)
    assert node.motors[-1].pins == (11, 12, 13)
    assert node.servo.pin == 14


def test_wrong_pin_count_gives_no_motors(tmp_path):
    n = MotionNode(MotionConfig(wheel_pins=(1, 2, 3)), log_dir=tmp_path)
    n.initialize(0.0)
    try:
        assert n.motors == []
        assert n.spin(0.1).is_ok()
    finally:
        n.close()


def test_cmd_vel_clamped_to_max_speed(node):
    node.on_cmd_vel(Twist(5.0, 0.3), 0.0)
    assert node.desired_linear == node.config.max_speed
    assert node.desired_angular == 0.3


def test_spin_ramps_and_drives_forward(node):
    node.on_cmd_vel(Twist(1.0, 0.5), 0.0)
    diag = node.spin(0.1)
    assert 0.0 < node.current_linear < 1.0
    assert node.last_pwm == compute_pwm(node.current_linear)
    assert all(m.direction is Direction.FORWARD for m in node.motors)
    assert all(m.speed == node.last_pwm for m in node.motors)
    assert node.servo.position is Turn.LEFT
    assert diag.statuses[0].message == "Operating normally"


def test_spin_reverse(node):
    node.on_cmd_vel(Twist(-1.0, -0.5), 0.0)
    node.spin(0.1)
    assert all(m.direction is Direction.BACKWARD for m in node.motors)
    assert all(m.speed == -node.last_pwm for m in node.motors)
    assert node.servo.position is Turn.RIGHT


def test_spin_reaches_target_monotonically(node):
    node.on_cmd_vel(Twist(0.3, 0.0), 0.0)
    values = []
    for step in range(1, 11):
        node.on_cmd_vel(Twist(0.3, 0.0), step * 0.1)
        node.spin(step * 0.1)
        values.append(node.current_linear)
    assert values == sorted(values)
    assert values[-1] == 0.3


def test_command_timeout_zeroes_desired(node):
    node.on_cmd_vel(Twist(1.0, 1.0), 0.0)
    node.spin(5.0)
    assert node.desired_linear == 0.0
    assert node.desired_angular == 0.0
    assert node.servo.position is Turn.STRAIGHT


def test_emergency_stop(node):
    node.on_cmd_vel(Twist(1.0, 1.0), 0.0)
    node.spin(0.1)
    assert node.set_emergency_stop(True) == "Emergency stop engaged"
    assert all(m.direction is Direction.STOP and m.speed == 0 for m in node.motors)
    assert node.servo.position is Turn.STRAIGHT
    diag = node.spin(0.2)
    assert diag.statuses[0].level is DiagnosticLevel.WARN
    assert diag.statuses[0].hardware_id == "motors_servo"
    assert all(m.direction is Direction.STOP for m in node.motors)
    assert node.servo.position is Turn.STRAIGHT
    assert node.set_emergency_stop(False) == "Emergency stop released"
    assert node.spin(0.3).is_ok()


def test_csv_logs(tmp_path):
    with MotionNode(MotionConfig(), log_dir=tmp_path) as n:
        n.on_cmd_vel(Twist(0.5, 0.2), 0.0)
        n.spin(0.1)
    with open(tmp_path / "commands.csv", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["timestamp", "linear_x", "angular_z"]
    assert [float(v) for v in rows[1]] == [0.0, 0.5, 0.2]
    with open(tmp_path / "state.csv", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["timestamp", "desired_linear", "desired_angular", "current_linear", "pwm"]
    assert len(rows) == 2


def test_spin_before_initialize_raises(tmp_path):
    n = MotionNode(MotionConfig(), log_dir=tmp_path)
    with pytest.raises(RuntimeError):
        n.spin(0.0)