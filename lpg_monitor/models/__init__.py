# Database models
from lpg_monitor.models.reading import TankReading
from lpg_monitor.models.tank_info import TankInfo

__all__ = ["TankReading", "TankInfo"]
