"""Crash risk engine: pillars, confirmation, decision table, cooldown, trace"""
from src.risk.engine import CoinObservation, CrashRiskEngine
from src.risk.models import RiskDecisionTrace, RiskPerCoin, RiskState
from src.risk.monitor import CrashRiskMonitor

__all__ = [
    "CoinObservation",
    "CrashRiskEngine",
    "CrashRiskMonitor",
    "RiskDecisionTrace",
    "RiskPerCoin",
    "RiskState",
]
