"""Capacity autoscaling for elastic pools."""

from src.scaling.config import AutoScalerConfig, load_autoscaler_config
from src.scaling.controller import ScalingController
from src.scaling.eligibility import EligibilityFilter
from src.scaling.engine import calculate_target_settings
from src.scaling.ladder import CapacityLadder
from src.scaling.models import ScalingAction, TargetSettings, UsageSnapshot

__all__ = [
    "AutoScalerConfig",
    "load_autoscaler_config",
    "ScalingController",
    "EligibilityFilter",
    "calculate_target_settings",
    "CapacityLadder",
    "ScalingAction",
    "TargetSettings",
    "UsageSnapshot",
]
