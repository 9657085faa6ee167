"""
===============================================================================
ASTROGATOR - Planner Settings
===============================================================================
User-facing options that change how transfers are planned, plus numeric
tuning for the plane-change iteration and the background scheduler.

Settings are a plain object handed to whichever component needs them; there
is no process-wide instance.  The YAML file uses the option names shown to
players (``GeneratePlaneChangeBurns`` ...), while Python code uses the
snake_case attributes.

Interlocks between options are enforced by the property setters so that an
inconsistent combination can never be stored:

    GeneratePlaneChangeBurns = False  clears DeleteExistingManeuvers,
                                      AutoEditPlaneChangeNode and
                                      AddPlaneChangeDeltaV
    AddPlaneChangeDeltaV = True       sets GeneratePlaneChangeBurns
    AutoEditEjectionNode = True       clears AutoEditPlaneChangeNode
    AutoEditPlaneChangeNode = True    clears AutoEditEjectionNode and sets
                                      GeneratePlaneChangeBurns
===============================================================================
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from astrogator.core.constants import DEG2RAD

logger = logging.getLogger(__name__)


class TransferSort(Enum):
    """Column by which the transfer table is ordered."""
    POSITION = 'position'
    NAME = 'name'
    TIME = 'time'
    DELTA_V = 'delta_v'


# YAML key -> attribute name
_YAML_KEYS = {
    'GeneratePlaneChangeBurns': 'generate_plane_change_burns',
    'AddPlaneChangeDeltaV': 'add_plane_change_delta_v',
    'DeleteExistingManeuvers': 'delete_existing_maneuvers',
    'AutoTargetDestination': 'auto_target_destination',
    'AutoFocusDestination': 'auto_focus_destination',
    'AutoEditEjectionNode': 'auto_edit_ejection_node',
    'AutoEditPlaneChangeNode': 'auto_edit_plane_change_node',
    'TranslationAdjust': 'translation_adjust',
    'TransferSort': 'transfer_sort',
    'DescendingSort': 'descending_sort',
    'PlaneChangeToleranceDeg': 'plane_change_tolerance_deg',
    'PlaneChangeMaxIterations': 'plane_change_max_iterations',
    'PlaneChangeIterationDelay': 'plane_change_iteration_delay',
    'TransferDelay': 'transfer_delay',
    'MinSecondsBetweenLoads': 'min_seconds_between_loads',
    'BurnPollInterval': 'burn_poll_interval',
    'BurnPadding': 'burn_padding',
    'FineAdjustStep': 'fine_adjust_step',
    'CoarseAdjustStep': 'coarse_adjust_step',
}


class Settings:
    """
    Planner options with their interlocks.

    Parameters
    ----------
    **overrides
        Attribute values to apply on top of the defaults.  They are applied
        in declaration order, so later interlocks win.
    """

    def __init__(self, **overrides: Any) -> None:
        # Option flags
        self._generate_plane_change_burns = True
        self._add_plane_change_delta_v = False
        self._delete_existing_maneuvers = False
        self._auto_edit_ejection_node = True
        self._auto_edit_plane_change_node = False
        self.auto_target_destination = True
        self.auto_focus_destination = True
        self.translation_adjust = True
        self.transfer_sort = TransferSort.POSITION
        self.descending_sort = False

        # Plane-change iteration
        self.plane_change_tolerance_deg = 0.05
        self.plane_change_max_iterations = 20
        self.plane_change_iteration_delay = 0.0     # s, between iterations

        # Background scheduler
        self.transfer_delay = 0.2                   # s, before each transfer
        self.min_seconds_between_loads = 5.0        # s of game time
        self.burn_poll_interval = 1.0               # s of wall time

        # Burns
        self.burn_padding = 60.0                    # s, warp stops this early
        self.fine_adjust_step = 0.1                 # m/s per unit input
        self.coarse_adjust_step = 1.0               # m/s per unit input

        self.update(**overrides)

    # ------------------------------------------------------------------
    # Interlocked options
    # ------------------------------------------------------------------

    @property
    def generate_plane_change_burns(self) -> bool:
        return self._generate_plane_change_burns

    @generate_plane_change_burns.setter
    def generate_plane_change_burns(self, value: bool) -> None:
        self._generate_plane_change_burns = bool(value)
        if not value:
            self._delete_existing_maneuvers = False
            self._auto_edit_plane_change_node = False
            self._add_plane_change_delta_v = False

    @property
    def add_plane_change_delta_v(self) -> bool:
        return self._add_plane_change_delta_v

    @add_plane_change_delta_v.setter
    def add_plane_change_delta_v(self, value: bool) -> None:
        self._add_plane_change_delta_v = bool(value)
        if value:
            self._generate_plane_change_burns = True

    @property
    def delete_existing_maneuvers(self) -> bool:
        return self._delete_existing_maneuvers

    @delete_existing_maneuvers.setter
    def delete_existing_maneuvers(self, value: bool) -> None:
        # Only meaningful while plane changes are generated
        self._delete_existing_maneuvers = bool(value) and self._generate_plane_change_burns

    @property
    def auto_edit_ejection_node(self) -> bool:
        return self._auto_edit_ejection_node

    @auto_edit_ejection_node.setter
    def auto_edit_ejection_node(self, value: bool) -> None:
        self._auto_edit_ejection_node = bool(value)
        if value:
            self._auto_edit_plane_change_node = False

    @property
    def auto_edit_plane_change_node(self) -> bool:
        return self._auto_edit_plane_change_node

    @auto_edit_plane_change_node.setter
    def auto_edit_plane_change_node(self, value: bool) -> None:
        self._auto_edit_plane_change_node = bool(value)
        if value:
            self._auto_edit_ejection_node = False
            self._generate_plane_change_burns = True

    @property
    def plane_change_tolerance(self) -> float:
        """Plane-change convergence tolerance in radians."""
        return self.plane_change_tolerance_deg * DEG2RAD

    # ------------------------------------------------------------------
    # Bulk update and persistence
    # ------------------------------------------------------------------

    def update(self, **changes: Any) -> None:
        """Set several attributes at once, rejecting unknown names."""
        known = set(_YAML_KEYS.values())
        for name, value in changes.items():
            if name not in known:
                raise ValueError(f"Unknown setting '{name}'")
            if name == 'transfer_sort' and not isinstance(value, TransferSort):
                value = TransferSort(str(value).lower())
            setattr(self, name, value)

    def to_dict(self) -> Dict[str, Any]:
        """Return the settings keyed by their YAML names."""
        out = {}
        for key, attr in _YAML_KEYS.items():
            value = getattr(self, attr)
            out[key] = value.value if isinstance(value, Enum) else value
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Settings':
        """
        Build settings from a mapping keyed by YAML names.

        Unknown keys are logged and ignored so that files written by newer
        versions still load.
        """
        settings = cls()
        if not data:
            return settings
        for key, value in data.items():
            attr = _YAML_KEYS.get(key)
            if attr is None:
                logger.warning("Ignoring unknown setting '%s'", key)
                continue
            settings.update(**{attr: value})
        return settings

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'Settings':
        """
        Load settings from a YAML file.

        A missing or malformed file yields the defaults.  The file may hold
        the options at top level or under an ``astrogator`` key.
        """
        path = Path(path)
        if not path.exists():
            logger.info("No settings file at %s, using defaults", path)
            return cls()
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Could not read settings from %s: %s", path, exc)
            return cls()
        if not isinstance(data, dict):
            logger.warning("Settings file %s is not a mapping, using defaults", path)
            return cls()
        if 'astrogator' in data:
            data = data['astrogator']
        logger.info("Loaded settings from %s", path)
        return cls.from_dict(data)

    def save(self, path: Union[str, Path]) -> None:
        """Write the settings to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump({'astrogator': self.to_dict()}, f, sort_keys=False)
        logger.debug("Saved settings to %s", path)

    def __repr__(self) -> str:
        flags = ', '.join(f"{k}={v}" for k, v in self.to_dict().items())
        return f"Settings({flags})"
