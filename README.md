# roverbrain

Control logic for a small wheeled rover. No hardware library or middleware is tied in.
You pass the hardware in as plain objects or callables, and you pass the current time
into each call. That makes every step easy to drive from your own loop or from tests.

## Modules

### `roverbrain.messages`

This module holds the shared message types:

- `Twist` holds `linear_x` and `angular_z`.
- `DiagnosticLevel` has the values `OK`, `WARN`, `ERROR` and `STALE`.
- `DiagnosticStatus` describes one component.
- `DiagnosticArray` holds a `stamp` and a list of `statuses`. Its `is_ok()` method returns
  True when every status is at level OK.

### `roverbrain.sensors`

`SensorsNode(config, sensor_factory, imu, log_dir=None)` reads the distance sensors and
the IMU.

- **Sensors.** The node builds one `DistanceSensor` per `SensorPosition`: `FRONT`,
  `FRONT_LEFT`, `FRONT_RIGHT` and `REAR`. It builds them from `SensorsConfig.trig_pins`
  and `SensorsConfig.echo_pins`, through `sensor_factory(trig, echo, position)`.
- **Pin counts.** If either pin list does not have four entries, a warning is logged
  and no distance sensors are created.
- **`initialize()`.** This call starts the `AngleSensor` and raises `SensorInitError`
  if `begin()` returns False. It then opens `distances.csv` and `imu.csv` in `log_dir`.
  The default `log_dir` is `./logs/sensors`.
- **`read_sensors(now)`.** This call reads every sensor, writes one row to each log and
  returns a `SensorReading`. The reading holds the distances, the three angles and a
  `DiagnosticArray`.
- **Diagnostics.** A distance of 0 or less, or above 200, is an `ERROR`. An IMU reading
  whose X or Y angle is NaN is an `ERROR`. See `distance_diagnostic` and
  `imu_diagnostic`.

A `DistanceSensor` takes its measurement from a `reader` callable. An `AngleSensor`
takes its angles from a `sampler` callable, and can take an optional `probe` callable
used by `begin()`.

### `roverbrain.motion`

`MotionNode(config, motor_factory=MotorDriver, servo_factory=SteeringServo, log_dir=None)`
turns velocity commands into motor and steering output.

- **Hardware.** The node groups `MotionConfig.wheel_pins` in threes, one `MotorDriver`
  per group. The default is twelve pins, which gives four motors. Any other pin count
  logs a warning and leaves no motors. The node makes a `SteeringServo` on `servo_pin`.
- **`initialize(now)`.** This call builds the hardware and opens `commands.csv` and
  `state.csv` in `log_dir`. The default `log_dir` is `./logs/motion`.
- **`on_cmd_vel(twist, now)`.** This call clamps `linear_x` to `±max_speed` and logs
  the command.
- **`spin(now)`.** This call runs one control cycle:
  1. If no command arrived within `cmd_timeout` seconds, the targets drop to zero.
  2. The linear speed ramps toward its target by `max_accel / control_rate`; see `ramp`.
  3. The speed is converted to a PWM value from -100 to 100; see `compute_pwm`.
  4. The motors are driven forward, backward or stopped.
  5. The servo is steered left, right or straight; see `steering_for`, which uses a
     dead band of ±0.1.
  6. A row is written to the state log.

  `spin` returns a `DiagnosticArray`, at level `WARN` while the emergency stop is engaged
  and `OK` otherwise.
- **`set_emergency_stop(engaged)`.** This call stops the motors and centres the steering
  when engaged. It returns the status message.

`MotorDriver` and `SteeringServo` each take an optional `output` callable that is told
every change.

### `roverbrain.autonomy`

`AutonomousNode(config, log_dir=None)` runs a state machine over `State`. The states are
`SEARCH_FACE`, `FOLLOW_FACE`, `SEARCH_MARKER`, `FOLLOW_MARKER` and `AVOID_OBSTACLE`.

- **Inputs.** Feed the node with these calls:
  - `on_vision(VisionResult)`
  - `on_front`, `on_front_left`, `on_front_right` and `on_rear`, for distances
  - `on_slam_pose(Pose, stamp)`
- **`spin(now)`.** This call moves to the next state (see `next_state`) and returns a
  `Twist`.
- **State rules.**
  - Any front distance below `safe_distance` forces `AVOID_OBSTACLE`.
  - A vision status of `"Tracking Marker"` drives the marker states.
- **`set_parameters(params)`.** This call changes `follow_distance`, `safe_distance`,
  `max_linear_speed` and `max_angular_speed` at run time. Other keys are ignored.
- **Logs.** State changes are logged to `state_log.csv` and poses to `slam_log.csv`.
  The default `log_dir` is `./logs/autonomous`.

All three nodes are context managers. Entering a node initializes it if it is not
already initialized; for `MotionNode` that uses time 0.0. Leaving a node closes its
CSV logs.

## Install

```
pip install .
pip install .[test]   # with pytest
```

## Example

```python
from pathlib import Path
from roverbrain.autonomy import AutonomousNode, AutonomyConfig, VisionResult

config = AutonomyConfig.from_mapping({"safe_distance": 25.0})
with AutonomousNode(config, log_dir=Path("logs/autonomous")) as node:
    node.on_front(120.0)
    node.on_vision(VisionResult(status="Tracking Face", face_x=300, face_width=40))
    cmd = node.spin(now=0.05)
    print(node.state.name, cmd.linear_x, cmd.angular_z)
```

`SensorsNode` and `MotionNode` follow the same pattern:

1. Build a config with `from_mapping`.
2. Supply the hardware factories.
3. Initialize the node.
4. Call `read_sensors(now)` or `spin(now)` at your control rate.

## What this package does not do

- **No hardware access.** It does not read GPIO, I²C or other hardware itself.
  Measurements come from the callables you supply, and motor and servo output goes to
  the callables you supply.
- **No messaging.** It does not publish or subscribe to any message bus. The topic
  names in the configs are only stored values, and the results are returned to the
  caller.
- **No vision.** It does not detect faces or markers from camera images.
  `AutonomousNode` only consumes the `VisionResult` values you give it.
- **No timer and no command.** It has no command-line entry point and no built-in
  timer loop. You call the nodes from your own control loop.

## Tests

```
pytest
```