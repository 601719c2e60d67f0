# market_dashboard/__init__.py
"""
Shared Package for the Market Dashboard Builder

This package contains:
- config: Configuration management (.env + environment)
- aggregation_engine: Nested market JSON -> geography x segment matrix and back

Usage:
    from market_dashboard.config import config
    from market_dashboard.aggregation_engine import MarketDataProcessor, FilterSpec

    # Or import commonly used items directly
    from market_dashboard import config, Config
"""

# Configuration
from .config import (
    config,
    Config,
    EngineConfig,
    MarketConfig,
    ExportConfig,
    ENGINE_CONFIG,
    APP_CONFIG,
)

__all__ = [
    # Config
    'config',
    'Config',
    'EngineConfig',
    'MarketConfig',
    'ExportConfig',
    'ENGINE_CONFIG',
    'APP_CONFIG',
]

__version__ = '2.0.0'
