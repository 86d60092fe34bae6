"""
api/routes/v1/teams.py -- Team management endpoints.

Routes (manager or superadmin):
  POST  /api/v1/teams                      -- create; the caller becomes the leader
  GET   /api/v1/teams                      -- list, ?region= and ?status= filters
  GET   /api/v1/teams/by-region            -- active teams grouped by region
  GET   /api/v1/teams/search?q=            -- substring search on name/description/region
  GET   /api/v1/teams/{team_id}
  GET   /api/v1/teams/{team_id}/hierarchy  -- leader and members with display names
  PATCH /api/v1/teams/{team_id}            -- edit fields and/or replace the member list
  POST  /api/v1/teams/{team_id}/deactivate

Literal paths (/by-region, /search) are registered before /{team_id}.
Every member id must reference an existing account; otherwise 400.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import TeamCreate, TeamHierarchyResponse, TeamMemberRef, TeamPatch, TeamResponse, respond
from auth.dependencies import require_team_lead
from auth.models import Account
from core.errors import Conflict, NotFound, ValidationError
from teams.models import Team
from teams.store import TeamStore

logger = logging.getLogger("teamgate.api.teams")

router = APIRouter()


def _teams(request: Request) -> TeamStore:
    return request.app.state.team_store


def _check_members(request: Request, member_ids: list[int]) -> None:
    missing = set(member_ids) - request.app.state.account_store.existing_ids(member_ids)
    if missing:
        raise ValidationError("One or more members are invalid.", errors=sorted(missing))


def _load(store: TeamStore, team_id: int) -> Team:
    team = store.get_team(team_id)
    if team is None:
        raise NotFound("Team not found.")
    return team


@router.post("/teams")
def create_team(
    request: Request,
    body: TeamCreate,
    account: Account = Depends(require_team_lead),
) -> JSONResponse:
    _check_members(request, body.member_ids)
    store = _teams(request)
    try:
        team_id = store.create_team(
            Team(
                name=body.name,
                leader_id=account.id,
                description=body.description,
                region=body.region,
                member_ids=body.member_ids,
            )
        )
    except IntegrityError as exc:
        raise Conflict("A team with that name already exists.") from exc
    logger.info("Team id=%s created by account id=%s", team_id, account.id)
    return respond(TeamResponse.from_team(_load(store, team_id)), "Team created.", status_code=201)


@router.get("/teams")
def list_teams(
    request: Request,
    region: Optional[str] = Query(default=None, max_length=100),
    status: Optional[str] = Query(default=None, pattern=r"^(active|inactive)$"),
    account: Account = Depends(require_team_lead),
) -> JSONResponse:
    teams = _teams(request).list_teams(region=region, status=status)
    return respond([TeamResponse.from_team(t) for t in teams], "Teams found.")


@router.get("/teams/by-region")
def teams_by_region(request: Request, account: Account = Depends(require_team_lead)) -> JSONResponse:
    grouped = _teams(request).teams_by_region()
    data = {
        region: [TeamResponse.from_team(t).model_dump(mode="json") for t in teams]
        for region, teams in grouped.items()
    }
    return respond(data, "Teams grouped by region.")


@router.get("/teams/search")
def search_teams(
    request: Request,
    q: str = Query(min_length=1, max_length=100),
    account: Account = Depends(require_team_lead),
) -> JSONResponse:
    teams = _teams(request).search_teams(q)
    return respond([TeamResponse.from_team(t) for t in teams], "Teams found.")


@router.get("/teams/{team_id}")
def get_team(request: Request, team_id: int, account: Account = Depends(require_team_lead)) -> JSONResponse:
    return respond(TeamResponse.from_team(_load(_teams(request), team_id)), "Team found.")



@router.get("/teams/{team_id}/hierarchy")
def team_hierarchy(request: Request, team_id: int, account: Account = Depends(require_team_lead)) -> JSONResponse:
    team = _load(_teams(request), team_id)
    accounts = {
        a.id: a for a in request.app.state.account_store.find_by_ids([team.leader_id, *team.member_ids])
    }
    leader = accounts.get(team.leader_id)
    payload = TeamHierarchyResponse(
        team_id=team.id,
        name=team.name,
        leader=TeamMemberRef.from_account(leader) if leader is not None else None,
        members=[TeamMemberRef.from_account(accounts[m]) for m in team.member_ids if m in accounts],
    )
    return respond(payload, "Team hierarchy retrieved.")

@router.patch("/teams/{team_id}")
def update_team(
    request: Request,
    team_id: int,
    body: TeamPatch,
    account: Account = Depends(require_team_lead),
) -> JSONResponse:
    fields = body.model_dump(exclude_none=True, exclude={"member_ids"})
    if not fields and body.member_ids is None:
        raise ValidationError("No changes supplied.")
    if body.member_ids is not None:
        _check_members(request, body.member_ids)

    store = _teams(request)
    try:
        updated = store.update_team(team_id, member_ids=body.member_ids, **fields)
    except IntegrityError as exc:
        raise Conflict("A team with that name already exists.") from exc
    if not updated:
        raise NotFound("Team not found.")
    logger.info("Team id=%s updated by account id=%s", team_id, account.id)
    return respond(TeamResponse.from_team(_load(store, team_id)), "Team updated.")


@router.post("/teams/{team_id}/deactivate")
def deactivate_team(request: Request, team_id: int, account: Account = Depends(require_team_lead)) -> JSONResponse:
    store = _teams(request)
    if not store.update_team(team_id, status="inactive"):
        raise NotFound("Team not found.")
    logger.info("Team id=%s deactivated by account id=%s", team_id, account.id)
    return respond(TeamResponse.from_team(_load(store, team_id)), "Team deactivated.")
