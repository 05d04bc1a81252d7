"""Configuration handling."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .cpe_search import CPE_SEARCH_COUNT, CPE_SEARCH_THRESHOLD, CPE_SEARCH_THRESHOLD_ALT
from .xeol import XEOL_LISTING_URL

logger = logging.getLogger(__name__)

DATA_DIR_ENV_VAR = "VULN_SEARCH_DATA"
CONFIG_FILENAME = "config.json"


def get_default_paths() -> Dict[str, Path]:
    """Get default paths for data and configuration."""
    data_dir = Path(os.getenv(DATA_DIR_ENV_VAR, Path.home() / ".vuln_search")).expanduser()

    return {
        "data_dir": data_dir,
        "config_file": data_dir / CONFIG_FILENAME,
        "vuln_database": data_dir / "vulndb.db3",
        "product_database": data_dir / "productdb.db3",
        "resources_dir": data_dir / "resources",
        "xeol_database": data_dir / "resources" / "xeol.db",
    }


@dataclass
class XeolConfig:
    enabled: bool = False
    database_path: Optional[Path] = None
    auto_download: bool = False
    download_url: str = XEOL_LISTING_URL


@dataclass
class Config:
    """Settings for a search run."""

    vuln_database: Path
    product_database: Path
    resources_dir: Path
    cpe_search_count: int = CPE_SEARCH_COUNT
    cpe_search_threshold: float = CPE_SEARCH_THRESHOLD
    cpe_search_threshold_alt: float = CPE_SEARCH_THRESHOLD_ALT
    modules_data_preference: List[str] = field(default_factory=lambda: ["nvd", "ghsa"])
    xeol: XeolConfig = field(default_factory=XeolConfig)

    @classmethod
    def defaults(cls) -> "Config":
        paths = get_default_paths()
        return cls(
            vuln_database=paths["vuln_database"],
            product_database=paths["product_database"],
            resources_dir=paths["resources_dir"],
            xeol=XeolConfig(database_path=paths["xeol_database"]),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "Config":
        """Create a config from the JSON layout, missing keys keep their defaults."""
        config = cls.defaults()
        base_dir = base_dir or Path.cwd()

        def resolve(value: str) -> Path:
            path = Path(value).expanduser()
            return path if path.is_absolute() else base_dir / path

        for key, attr in (("VULN_DATABASE", "vuln_database"), ("PRODUCT_DATABASE", "product_database")):
            section = data.get(key) or {}
            if not isinstance(section, dict):
                raise ValueError(f"{key} must be an object with a NAME entry")
            if section.get("NAME"):
                setattr(config, attr, resolve(section["NAME"]))
        if "RESOURCES_DIR" in data:
            config.resources_dir = resolve(data["RESOURCES_DIR"])

        try:
            if "CPE_SEARCH_COUNT" in data:
                config.cpe_search_count = int(data["CPE_SEARCH_COUNT"])
            if "CPE_SEARCH_THRESHOLD" in data:
                config.cpe_search_threshold = float(data["CPE_SEARCH_THRESHOLD"])
            if "CPE_SEARCH_THRESHOLD_ALT" in data:
                config.cpe_search_threshold_alt = float(data["CPE_SEARCH_THRESHOLD_ALT"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid CPE search setting: {e}") from e

        if "MODULES_DATA_PREFERENCE" in data:
            config.modules_data_preference = list(data["MODULES_DATA_PREFERENCE"])

        xeol = data.get("XEOL_DATABASE", {})
        if xeol:
            config.xeol.enabled = bool(xeol.get("ENABLED", False))
            config.xeol.auto_download = bool(xeol.get("AUTO_DOWNLOAD", False))
            if xeol.get("DATABASE_PATH"):
                config.xeol.database_path = resolve(xeol["DATABASE_PATH"])
            if xeol.get("DOWNLOAD_URL"):
                config.xeol.download_url = xeol["DOWNLOAD_URL"]

        return config


def load_config(config_file: Optional[Path] = None) -> Config:
    """Load the JSON config file, falling back to defaults if it is unusable."""
    config_path = Path(config_file).expanduser() if config_file else get_default_paths()["config_file"]

    if not config_path.exists():
        if config_file:
            logger.error(f"Config file not found: {config_path}")
        return Config.defaults()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read config file {config_path}: {e}")
        return Config.defaults()

    return Config.from_dict(data, base_dir=config_path.parent)
