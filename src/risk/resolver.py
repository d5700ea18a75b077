"""
State Resolver - deterministic decision table from pillar outputs to RiskState

Rows are evaluated top-down, first match wins. Only row 6 yields RED.
"""
from typing import Optional

from src.risk.models import DecisionBranch, DecisionResult, RiskState, StructureState


def resolve_state(
    data_unavailable: bool,
    universe_eligible: bool,
    crowding_confirmed: bool,
    structure_state: Optional[StructureState],
    liquidity_confirmed: bool,
) -> DecisionResult:
    if data_unavailable:
        return DecisionResult(DecisionBranch.DATA_UNAVAILABLE, RiskState.UNSUPPORTED)
    if not universe_eligible:
        return DecisionResult(DecisionBranch.NOT_ELIGIBLE, RiskState.UNSUPPORTED)
    if not crowding_confirmed:
        return DecisionResult(DecisionBranch.NO_CROWDING, RiskState.GREEN)
    if structure_state == StructureState.INTACT:
        return DecisionResult(DecisionBranch.STRUCTURE_INTACT, RiskState.GREEN)
    if structure_state == StructureState.WEAKENING and not liquidity_confirmed:
        return DecisionResult(DecisionBranch.WEAKENING_NO_LIQUIDITY_STRESS, RiskState.ORANGE)
    if structure_state == StructureState.BROKEN and liquidity_confirmed:
        return DecisionResult(DecisionBranch.BROKEN_WITH_LIQUIDITY_STRESS, RiskState.RED)
    if structure_state == StructureState.WEAKENING and liquidity_confirmed:
        return DecisionResult(DecisionBranch.WEAKENING_WITH_LIQUIDITY_STRESS, RiskState.ORANGE)
    if structure_state == StructureState.BROKEN and not liquidity_confirmed:
        return DecisionResult(DecisionBranch.BROKEN_NO_LIQUIDITY_STRESS, RiskState.ORANGE)
    if structure_state is None:
        # Crowding confirmed but structure unevaluable: fail safe
        return DecisionResult(DecisionBranch.STRUCTURE_UNAVAILABLE, RiskState.GREEN)
    return DecisionResult(DecisionBranch.DEFAULT, RiskState.GREEN)
