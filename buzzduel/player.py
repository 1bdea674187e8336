from __future__ import annotations
from typing import Optional

from buzzduel.enums import Team, PlayerRole


class Player:
    def __init__(self, id: str, name: str, team: Optional[Team] = None,
                 role: PlayerRole = PlayerRole.PLAYER, connected: bool = True):
        self.id = id
        self.name = name
        self.team = team
        self.role = role
        # Survives transport drops; only the connection lifecycle flips it
        self.connected = connected

    @property
    def is_judge(self) -> bool:
        return self.role == PlayerRole.JUDGE

    def __eq__(self, other) -> bool:
        if not isinstance(other, Player):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        """
        Returns information about who the player is.
        """
        label = self.team.value if self.team else self.role.value
        return f"<Player {self.name} ({label})>"

    def to_dict(self) -> dict:
        """
        Returns a dictionary snapshot of the player as sent to clients.
        """
        return {
            "id": self.id,
            "name": self.name,
            "team": self.team.value if self.team else None,
            "role": self.role.value,
            "connected": self.connected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Player":
        team = data.get("team")
        return cls(
            id=data["id"],
            name=data["name"],
            team=Team(team) if team else None,
            role=PlayerRole(data.get("role", PlayerRole.PLAYER.value)),
            connected=bool(data.get("connected", True)),
        )
