"""
teams/store.py -- SQLAlchemy-backed persistence for teams.

Pattern: Repository + Data Mapper, the same shape as auth/store.py. Team
membership lives in a join table so a member can belong to several teams.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TeamStore("sqlite:///teamgate.db")
    team_id = store.create_team(Team(name="Platform", leader_id=3, member_ids=[4, 5]))
    team = store.get_team(team_id)
    store.close()
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select
from sqlalchemy.engine import Engine

from teams.models import Team

metadata = MetaData()

_teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("region", String(100), nullable=False, server_default=""),
    Column("leader_id", Integer, nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(40), nullable=False),
)

_team_members = Table(
    "team_members",
    metadata,
    Column("team_id", Integer, primary_key=True),
    Column("account_id", Integer, primary_key=True),
)

_UPDATABLE = frozenset({"name", "description", "region", "status"})


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class TeamStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_team(self, team: Team) -> int:
        """Insert a team and its members in one transaction. Returns the new id.

        Raises sqlalchemy.exc.IntegrityError if the team name is taken.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _teams.insert().values(
                    name=team.name,
                    description=team.description,
                    region=team.region,
                    leader_id=team.leader_id,
                    status=team.status,
                    created_at=_now_iso(),
                )
            )
            team_id = result.inserted_primary_key[0]
            self._write_members(conn, team_id, team.member_ids)
        return team_id

    def update_team(self, team_id: int, member_ids: Optional[list[int]] = None, **fields) -> bool:
        """Patch team fields and optionally replace the member list.

        Accepted fields: name, description, region, status.
        Returns False if the team does not exist.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown team fields: {sorted(unknown)!r}")
        with self.engine.begin() as conn:
            exists = conn.execute(select(_teams.c.id).where(_teams.c.id == team_id)).fetchone()
            if exists is None:
                return False
            if fields:
                conn.execute(_teams.update().where(_teams.c.id == team_id).values(**fields))
            if member_ids is not None:
                conn.execute(_team_members.delete().where(_team_members.c.team_id == team_id))
                self._write_members(conn, team_id, member_ids)
        return True

    @staticmethod
    def _write_members(conn, team_id: int, member_ids: list[int]) -> None:
        unique = list(dict.fromkeys(member_ids))
        if unique:
            conn.execute(
                _team_members.insert(),
                [{"team_id": team_id, "account_id": account_id} for account_id in unique],
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_team(self, team_id: int) -> Optional[Team]:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
            if row is None:
                return None
            members = self._members_for(conn, [team_id])
        return _row_to_team(row, members.get(team_id, []))

    def list_teams(self, region: Optional[str] = None, status: Optional[str] = None) -> list[Team]:
        query = _teams.select().order_by(_teams.c.name)
        if region:
            query = query.where(_teams.c.region == region)
        if status:
            query = query.where(_teams.c.status == status)
        return self._fetch(query)

    def search_teams(self, term: str) -> list[Team]:
        """Case-insensitive substring match on name, description, or region."""
        pattern = f"%{term.strip().lower()}%"
        query = (
            _teams.select()
            .where(
                or_(
                    _teams.c.name.ilike(pattern),
                    _teams.c.description.ilike(pattern),
                    _teams.c.region.ilike(pattern),
                )
            )
            .order_by(_teams.c.name)
        )
        return self._fetch(query)

    def teams_by_region(self) -> dict[str, list[Team]]:
        """Group active teams by region ("" for teams without one)."""
        grouped: dict[str, list[Team]] = defaultdict(list)
        for team in self.list_teams(status="active"):
            grouped[team.region].append(team)
        return dict(grouped)

    def _fetch(self, query) -> list[Team]:
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            members = self._members_for(conn, [r.id for r in rows])
        return [_row_to_team(r, members.get(r.id, [])) for r in rows]

    @staticmethod
    def _members_for(conn, team_ids: list[int]) -> dict[int, list[int]]:
        if not team_ids:
            return {}
        rows = conn.execute(
            _team_members.select()
            .where(_team_members.c.team_id.in_(team_ids))
            .order_by(_team_members.c.account_id)
        ).fetchall()
        members: dict[int, list[int]] = defaultdict(list)
        for r in rows:
            members[r.team_id].append(r.account_id)
        return members

    def close(self) -> None:
        self.engine.dispose()


def _row_to_team(row, member_ids: list[int]) -> Team:
    return Team(
        id=row.id,
        name=row.name,
        description=row.description,
        region=row.region,
        leader_id=row.leader_id,
        status=row.status,
        member_ids=list(member_ids),
        created_at=row.created_at,
    )
