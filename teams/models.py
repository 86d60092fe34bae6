"""
teams/models.py -- Domain dataclasses for team management.

Pure data containers. TeamStore does the work; routes map to API models.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Team:
    """A team led by a manager, with member account ids.

    leader_id is the account that created the team (taken from the session,
    not the request body). Teams are never deleted; status flips to "inactive".

    id is None before the record is written to the database.
    """

    name: str
    leader_id: int
    description: str = ""
    region: str = ""
    status: str = "active"  # "active" | "inactive"
    member_ids: list[int] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
