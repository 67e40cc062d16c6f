from .base import Sensor
from .bank import SensorBank, SENSOR_ORDER, default_sensors

__all__ = ["Sensor", "SensorBank", "SENSOR_ORDER", "default_sensors"]
