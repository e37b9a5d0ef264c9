"""
Observation Routes - Researcher notes (staff only).
"""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from coach.api.access import Caller, Tier, require
from coach.models.schemas import CreateObservationRequest
from coach.services.observation_service import ObservationService, get_observation_service

router = APIRouter(prefix="/observation", tags=["Observations"])


class NoteResponse(BaseModel):
    id: str
    invitation_id: str
    session_id: Optional[int] = None
    researcher_id: str
    content: str
    timestamp: datetime
    researcher: Optional[Dict[str, Optional[str]]] = None


@router.post("", response_model=NoteResponse, summary="Add an observation note")
async def create_note(
    body: CreateObservationRequest,
    caller: Caller = Depends(require(Tier.STAFF)),
    service: ObservationService = Depends(get_observation_service),
) -> NoteResponse:
    note = service.create(caller.user_id, body.invitation_id, body.content, body.session_id)
    return NoteResponse(**note)


@router.get("", response_model=List[NoteResponse], summary="List notes for an invitation")
async def list_notes(
    invitation_id: str,
    session_id: Optional[int] = None,
    caller: Caller = Depends(require(Tier.STAFF)),
    service: ObservationService = Depends(get_observation_service),
) -> List[NoteResponse]:
    return [NoteResponse(**note) for note in service.list(invitation_id, session_id)]


@router.delete("/{note_id}", response_model=NoteResponse, summary="Delete one of my notes")
async def delete_note(
    note_id: str,
    caller: Caller = Depends(require(Tier.STAFF)),
    service: ObservationService = Depends(get_observation_service),
) -> NoteResponse:
    return NoteResponse(**service.delete(caller.user_id, note_id))
