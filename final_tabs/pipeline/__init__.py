# Pipeline module

from .config import AutopostConfig, ConfigError, load_config
from .coordinator import AutopostCoordinator, AutopostError
from .models import RunState, RunSummary

__all__ = [
    "AutopostConfig",
    "ConfigError",
    "load_config",
    "AutopostCoordinator",
    "AutopostError",
    "RunState",
    "RunSummary",
]
