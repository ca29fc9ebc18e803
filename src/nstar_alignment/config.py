"""
Alignment Engine Configuration

Settings are loaded from config.yaml next to this module (or a given path)
and merged over DEFAULT_CONFIG section by section, then validated into an
AlignmentSettings instance which stays fixed for the lifetime of a model.
"""

import copy
import logging
import os
from enum import Enum

import yaml

from nstar_alignment.coordinates import Hemisphere, internal_home
from nstar_alignment.errors import ConfigurationError
from nstar_alignment.positions import EncoderPosition
from nstar_alignment.triangle import ActivePoints, ThreePointAlgorithm

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(BASE_DIR, "config.yaml")
DEFAULT_CONFIG = {
    "observer": {"latitude": 50.1822, "longitude": 19.7925, "elevation": 400},
    "mount": {
        "steps_per_rev": [2457601, 2457601],
        "home_position": None,
        "hemisphere": "auto",
    },
    "alignment": {
        "active_points": "all",
        "three_point_algorithm": "best_centroid",
        "transform": "affine",
        "alignment_mode": "nstar_plus_nearest",
        "polar_enable": True,
        "max_combination_count": 50,
        "check_local_pier": False,
        "proximity_limit": 0.5,
    },
}


class TransformKind(Enum):
    AFFINE = "affine"
    TAKI = "taki"


class AlignmentMode(Enum):
    NSTAR_PLUS_NEAREST = "nstar_plus_nearest"
    NEAREST = "nearest"


def merge_config(base, override):
    """Returns base updated section by section with the override values."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path=None):
    """Loads configuration from YAML file or returns defaults."""
    path = path or CONFIG_PATH
    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                return merge_config(DEFAULT_CONFIG, yaml.safe_load(f))
        except (OSError, yaml.YAMLError, AttributeError) as e:
            logger.warning(f"Error loading config {path}: {e}")
    return copy.deepcopy(DEFAULT_CONFIG)


def _enum(kind, value, name):
    if isinstance(value, kind):
        return value
    try:
        return kind(str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in kind)
        raise ConfigurationError(f"Invalid {name} '{value}', expected one of: {allowed}") from None


def _pair(value, name):
    try:
        ra, dec = value
        return EncoderPosition(int(ra), int(dec))
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a pair of integers, got {value!r}") from None


class AlignmentSettings:
    """Validated, typed view of a configuration dict."""

    def __init__(
        self,
        latitude=DEFAULT_CONFIG["observer"]["latitude"],
        longitude=DEFAULT_CONFIG["observer"]["longitude"],
        elevation=DEFAULT_CONFIG["observer"]["elevation"],
        steps_per_rev=(2457601, 2457601),
        home_position=None,
        hemisphere=None,
        active_points=ActivePoints.ALL,
        three_point_algorithm=ThreePointAlgorithm.BEST_CENTROID,
        transform=TransformKind.AFFINE,
        alignment_mode=AlignmentMode.NSTAR_PLUS_NEAREST,
        polar_enable=True,
        max_combination_count=50,
        check_local_pier=False,
        proximity_limit=0.5,
    ):
        if not -90.0 <= latitude <= 90.0:
            raise ConfigurationError(f"Latitude {latitude} outside [-90, 90]")
        self.latitude = float(latitude)
        self.longitude = float(longitude)
        self.elevation = float(elevation)

        self.steps_per_rev = _pair(steps_per_rev, "steps_per_rev")
        if min(self.steps_per_rev) <= 0:
            raise ConfigurationError(f"steps_per_rev must be positive, got {tuple(self.steps_per_rev)}")
        self.home_position = (
            internal_home(self.steps_per_rev)
            if home_position is None
            else _pair(home_position, "home_position")
        )
        if hemisphere is None or hemisphere == "auto":
            hemisphere = Hemisphere.NORTHERN if self.latitude >= 0 else Hemisphere.SOUTHERN
        self.hemisphere = _enum(Hemisphere, hemisphere, "hemisphere")

        self.active_points = _enum(ActivePoints, active_points, "active_points")
        self.three_point_algorithm = _enum(
            ThreePointAlgorithm, three_point_algorithm, "three_point_algorithm"
        )
        self.transform = _enum(TransformKind, transform, "transform")
        self.alignment_mode = _enum(AlignmentMode, alignment_mode, "alignment_mode")
        self.polar_enable = bool(polar_enable)

        if int(max_combination_count) < 3:
            raise ConfigurationError(
                f"max_combination_count must be at least 3, got {max_combination_count}"
            )
        self.max_combination_count = int(max_combination_count)
        self.check_local_pier = bool(check_local_pier)
        if proximity_limit < 0:
            raise ConfigurationError(f"proximity_limit must not be negative, got {proximity_limit}")
        self.proximity_limit = float(proximity_limit)

    @classmethod
    def from_config(cls, config=None):
        """Builds settings from a (possibly partial) configuration dict."""
        config = merge_config(DEFAULT_CONFIG, config)
        obs_cfg = config["observer"]
        mnt_cfg = config["mount"]
        aln_cfg = config["alignment"]
        return cls(
            latitude=obs_cfg["latitude"],
            longitude=obs_cfg["longitude"],
            elevation=obs_cfg["elevation"],
            steps_per_rev=mnt_cfg["steps_per_rev"],
            home_position=mnt_cfg["home_position"],
            hemisphere=mnt_cfg["hemisphere"],
            active_points=aln_cfg["active_points"],
            three_point_algorithm=aln_cfg["three_point_algorithm"],
            transform=aln_cfg["transform"],
            alignment_mode=aln_cfg["alignment_mode"],
            polar_enable=aln_cfg["polar_enable"],
            max_combination_count=aln_cfg["max_combination_count"],
            check_local_pier=aln_cfg["check_local_pier"],
            proximity_limit=aln_cfg["proximity_limit"],
        )
