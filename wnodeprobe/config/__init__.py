"""Configuration module for wnodeprobe."""

from wnodeprobe.config.loader import load_config, get_config_path, save_config
from wnodeprobe.config.schema import Config, NodeConfig, ScenarioConfig

__all__ = ["Config", "NodeConfig", "ScenarioConfig", "load_config", "get_config_path", "save_config"]
