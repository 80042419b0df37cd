"""
Sensor supervision.

Owns the external sensor process: launch, stream consumption, crash
detection and delayed restart.
"""

from nidswatch.sensor.process import (
    MockSensorProcess,
    SensorFactory,
    SensorProcess,
    SubprocessSensor,
    create_sensor,
)
from nidswatch.sensor.supervisor import (
    ExitCause,
    ExitInfo,
    SensorSupervisor,
    SupervisorState,
)

__all__ = [
    # Process
    "MockSensorProcess",
    "SensorFactory",
    "SensorProcess",
    "SubprocessSensor",
    "create_sensor",
    # Supervisor
    "ExitCause",
    "ExitInfo",
    "SensorSupervisor",
    "SupervisorState",
]
