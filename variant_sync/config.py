"""Configuration management for Variant Watcher.

Stores and retrieves settings from a JSON config file in the
platform-appropriate application data directory.  The crop and
encoding profiles are part of the config but are fixed for the
lifetime of a run.
"""

import json
import logging
from pathlib import Path
from typing import Any

from variant_sync.engine import MAX_HEIGHT, MAX_WIDTH
from variant_sync.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from variant_sync.platform_utils import (
    get_log_path as _platform_log_path,
)
from variant_sync.variants import (
    DEFAULT_CROPS,
    DEFAULT_ENCODINGS,
    CropProfile,
    EncodingProfile,
    VariantMatrix,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSIONS = [
    "jpg", "jpeg", "png", "gif", "webp", "avif", "heic", "heif", "tiff", "tif", "svg",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "input_folder": "images",
    "output_folder": "output",
    "stable_time_seconds": 2.0,
    "poll_interval_seconds": 0.1,
    "image_extensions": list(DEFAULT_IMAGE_EXTENSIONS),
    # ---- downscale bound ----
    "max_width": MAX_WIDTH,
    "max_height": MAX_HEIGHT,
    # ---- variant matrix ----
    "crop_profiles": [
        {"name": c.name, "width": c.width, "height": c.height, "fit": c.fit}
        for c in DEFAULT_CROPS
    ],
    "encoding_profiles": [
        {"name": e.name, "format": e.format, "extension": e.extension, "options": dict(e.options)}
        for e in DEFAULT_ENCODINGS
    ],
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        defaults = json.loads(json.dumps(DEFAULT_CONFIG))
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                # Merge stored values over defaults so new keys get defaults
                self._data = {**defaults, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = defaults
        else:
            self._data = defaults
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- folders ----

    @property
    def input_folder(self) -> str:
        """Return the watched source folder path."""
        return self._data["input_folder"]

    @input_folder.setter
    def input_folder(self, value: str) -> None:
        self._data["input_folder"] = str(value)

    @property
    def output_folder(self) -> str:
        """Return the variant output folder path."""
        return self._data["output_folder"]

    @output_folder.setter
    def output_folder(self, value: str) -> None:
        self._data["output_folder"] = str(value)

    # ---- event timing ----

    @property
    def stable_time(self) -> float:
        """Return the write-stability threshold in seconds."""
        return float(self._data["stable_time_seconds"])

    @stable_time.setter
    def stable_time(self, value: float) -> None:
        """Set the stability threshold (minimum 0 s)."""
        self._data["stable_time_seconds"] = max(0.0, float(value))

    @property
    def poll_interval(self) -> float:
        """Return how often pending files are re-checked, in seconds."""
        return float(self._data["poll_interval_seconds"])

    @poll_interval.setter
    def poll_interval(self, value: float) -> None:
        """Set the poll interval (minimum 10 ms)."""
        self._data["poll_interval_seconds"] = max(0.01, float(value))

    @property
    def image_extensions(self) -> list[str]:
        """Return the extensions treated as source images."""
        return self._data["image_extensions"]

    @image_extensions.setter
    def image_extensions(self, value: list[str]) -> None:
        """Set image extensions, normalising to lowercase without dots."""
        self._data["image_extensions"] = [
            ext.lower().strip().lstrip(".") for ext in value if ext.strip()
        ]

    # ---- downscale bound ----

    @property
    def max_width(self) -> int:
        return int(self._data["max_width"])

    @max_width.setter
    def max_width(self, value: int) -> None:
        self._data["max_width"] = max(1, int(value))

    @property
    def max_height(self) -> int:
        return int(self._data["max_height"])

    @max_height.setter
    def max_height(self, value: int) -> None:
        self._data["max_height"] = max(1, int(value))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value.upper()

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))

    # ---- variant matrix ----

    def crop_profiles(self) -> list[CropProfile]:
        """Parse the configured crop profiles."""
        profiles = []
        for raw in self._data["crop_profiles"]:
            try:
                profiles.append(
                    CropProfile(
                        name=str(raw["name"]),
                        width=raw.get("width"),
                        height=raw.get("height"),
                        fit=raw.get("fit", "cover"),
                    )
                )
            except (KeyError, TypeError, AttributeError) as exc:
                raise ValueError(f"Invalid crop profile {raw!r}: {exc}") from exc
        return profiles

    def encoding_profiles(self) -> list[EncodingProfile]:
        """Parse the configured encoding profiles."""
        profiles = []
        for raw in self._data["encoding_profiles"]:
            try:
                profiles.append(
                    EncodingProfile(
                        name=str(raw["name"]),
                        format=str(raw["format"]).upper(),
                        extension=str(raw["extension"]).lower(),
                        options=dict(raw.get("options") or {}),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"Invalid encoding profile {raw!r}: {exc}") from exc
        return profiles

    def build_matrix(self) -> VariantMatrix:
        """Return the variant matrix for the configured output folder."""
        return VariantMatrix(
            self.output_folder, self.crop_profiles(), self.encoding_profiles()
        )
