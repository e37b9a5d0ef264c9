"""
Scenario Routes - Public scenario catalogue.
"""
from typing import List

from fastapi import APIRouter, Depends

from coach.api.access import Caller, Tier, require
from coach.models.schemas import ScenarioSummary
from coach.services.scenario_service import ScenarioService, get_scenario_service

router = APIRouter(prefix="/scenario", tags=["Scenarios"])


@router.get("", response_model=List[ScenarioSummary], summary="List active scenarios")
async def list_scenarios(
    caller: Caller = Depends(require(Tier.PUBLIC)),
    service: ScenarioService = Depends(get_scenario_service),
) -> List[ScenarioSummary]:
    return [ScenarioSummary(**s) for s in service.list_active()]


@router.get("/{scenario_id}", response_model=ScenarioSummary, summary="Get a scenario")
async def get_scenario(
    scenario_id: int,
    caller: Caller = Depends(require(Tier.PUBLIC)),
    service: ScenarioService = Depends(get_scenario_service),
) -> ScenarioSummary:
    return ScenarioSummary(**service.get(scenario_id))
