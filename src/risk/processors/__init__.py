"""Crash risk pillar processors"""
from .universe import UniverseFilter
from .crowding import CrowdingDetector
from .structure import StructureEvaluator
from .liquidity import LiquidityStressDetector

__all__ = [
    "UniverseFilter",
    "CrowdingDetector",
    "StructureEvaluator",
    "LiquidityStressDetector",
]
