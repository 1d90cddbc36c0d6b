"""Participant registry backed by YAML configuration."""

from __future__ import annotations

from pathlib import Path

import yaml


class YamlParticipantRegistry:
    """Bidders registered per auction, read from ``participants.yaml``.

    Stands in for the application's registration table when no database is
    configured.
    """

    def __init__(self, config_path: Path | str) -> None:
        self._path = Path(config_path)
        self._participants: dict[str, frozenset[str]] = {}
        self.reload()

    def reload(self) -> None:
        data = yaml.safe_load(self._path.read_text()) or {}
        participants = {}
        for item in data.get("auctions", []):
            bidders = frozenset(str(bidder) for bidder in item.get("postores", []))
            participants[str(item["id_subasta"])] = bidders
        self._participants = participants

    def auctions(self) -> list[str]:
        return sorted(self._participants)

    async def is_participant(self, auction_id: str, bidder_id: str) -> bool:
        return bidder_id in self._participants.get(auction_id, frozenset())
