"""Core components for the hedge engine"""
from .config import ConfigError, DatabaseConfig, HedgeConfig
from .hedge_manager import HedgeManager, HedgeManagerAlreadyRunning

__all__ = ['HedgeManager', 'HedgeManagerAlreadyRunning', 'HedgeConfig', 'DatabaseConfig', 'ConfigError']
