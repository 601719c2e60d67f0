# market_dashboard/config.py
"""
Centralized Configuration Management

Version: 2.0.0
Features:
- Local (.env) configuration via python-dotenv
- Singleton pattern for efficiency
- Type-safe getters with defaults
- Engine limits (traversal depth, hierarchy columns) in one place
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict

# Initialize logger
logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """Read an integer env var, falling back to default on bad input"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """Aggregation engine configuration container"""
    max_depth: int = 20
    hierarchy_level_columns: int = 10
    cagr_decimals: int = 2
    debug_timing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarketConfig:
    """Market metadata defaults container"""
    currency: str = "USD"
    value_unit: str = "Million"
    volume_unit: str = "Units"
    market_type: str = "Market Analysis"
    industry: str = "General"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExportConfig:
    """Export configuration container"""
    export_dir: Path = field(default_factory=lambda: Path.cwd() / "export")
    value_file: str = "value.json"
    volume_file: str = "volume.json"
    segmentation_file: str = "segmentation_analysis.json"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'export_dir': str(self.export_dir),
            'value_file': self.value_file,
            'volume_file': self.volume_file,
            'segmentation_file': self.segmentation_file,
        }


class Config:
    """
    Centralized configuration management

    Usage:
        from market_dashboard.config import config

        # Engine limits
        max_depth = config.get_engine_config().max_depth

        # Market metadata defaults
        currency = config.get_market_config().currency

        # Ad-hoc settings
        timing = config.get_app_setting("ENABLE_DEBUG_TIMING", False)
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._load_config()
        self._initialized = True

    def _load_config(self):
        """Load configuration from .env (if any) and the process environment"""
        env_paths = [
            Path.cwd() / ".env",
            Path(__file__).parent.parent / ".env",
        ]

        for env_path in env_paths:
            if env_path.exists():
                load_dotenv(env_path)
                logger.info(f"Loaded .env from: {env_path}")
                break

        self._engine_config = EngineConfig(
            max_depth=max(1, _env_int("MARKET_ENGINE_MAX_DEPTH", 20)),
            hierarchy_level_columns=max(1, _env_int("MARKET_ENGINE_LEVEL_COLUMNS", 10)),
            cagr_decimals=max(0, _env_int("MARKET_ENGINE_CAGR_DECIMALS", 2)),
            debug_timing=_env_bool("ENABLE_DEBUG_TIMING", False),
        )

        self._market_config = MarketConfig(
            currency=os.getenv("MARKET_CURRENCY", "USD"),
            value_unit=os.getenv("MARKET_VALUE_UNIT", "Million"),
            volume_unit=os.getenv("MARKET_VOLUME_UNIT", "Units"),
        )

        export_dir = os.getenv("MARKET_EXPORT_DIR")
        self._export_config = ExportConfig(
            export_dir=Path(export_dir) if export_dir else Path.cwd() / "export"
        )

        self._app_config = {
            "ENABLE_DEBUG_TIMING": self._engine_config.debug_timing,
            "ENABLE_EXCEL_EXPORT": _env_bool("ENABLE_EXCEL_EXPORT", True),
            "BACKGROUND_WORKERS": max(1, _env_int("MARKET_ENGINE_WORKERS", 1)),
        }

        self._log_config_status()

    def _log_config_status(self):
        """Log configuration status"""
        logger.info(f"✅ Engine: max_depth={self._engine_config.max_depth}, "
                    f"level_columns={self._engine_config.hierarchy_level_columns}")
        logger.info(f"✅ Market defaults: {self._market_config.currency} / "
                    f"{self._market_config.value_unit}")

    # ==================== PUBLIC GETTERS ====================

    def get_engine_config(self) -> EngineConfig:
        """Get aggregation engine limits"""
        return self._engine_config

    def get_market_config(self) -> MarketConfig:
        """Get market metadata defaults"""
        return self._market_config

    def get_export_config(self) -> ExportConfig:
        """Get export file names and target directory"""
        return self._export_config

    def get_app_setting(self, key: str, default: Any = None) -> Any:
        """Get application setting with default"""
        return self._app_config.get(key, default)

    def is_feature_enabled(self, feature: str) -> bool:
        """Check if feature is enabled"""
        key = f"ENABLE_{feature.upper()}"
        return bool(self._app_config.get(key, True))

    def reload(self, overrides: Optional[Dict[str, Any]] = None):
        """
        Re-read the environment, then apply engine overrides.

        Args:
            overrides: Optional EngineConfig field values to force
        """
        self._load_config()
        for key, value in (overrides or {}).items():
            if hasattr(self._engine_config, key):
                setattr(self._engine_config, key, value)
            else:
                logger.warning(f"Unknown engine setting ignored: {key}")

    # ==================== PROPERTIES ====================

    @property
    def engine_config(self) -> Dict[str, Any]:
        return self._engine_config.to_dict()

    @property
    def app_config(self) -> Dict[str, Any]:
        return self._app_config.copy()


# ==================== SINGLETON INSTANCE ====================

config = Config()

# ==================== CONVENIENCE EXPORTS ====================

ENGINE_CONFIG = config.engine_config
APP_CONFIG = config.app_config

__all__ = [
    'config',
    'Config',
    'EngineConfig',
    'MarketConfig',
    'ExportConfig',
    'ENGINE_CONFIG',
    'APP_CONFIG',
]
