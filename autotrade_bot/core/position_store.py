from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from autotrade_bot.config import Settings
from autotrade_bot.core.models import Position


class PositionStore:
    """JSON snapshot of open positions so monitoring can resume after a restart."""

    def __init__(self, path: str | Path) -> None:
        self.snapshot_path = Path(path)
        self.logger = logging.getLogger("autotrade_bot.positions")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PositionStore":
        return cls(settings.POSITION_SNAPSHOT_PATH)

    def save(self, positions: dict[str, list[Position]]) -> None:
        open_positions = [
            p.to_dict() for user_positions in positions.values() for p in user_positions if not p.is_terminal
        ]
        payload = {"ts": time.time(), "open_positions": open_positions}
        self._write_snapshot(payload)

    def _write_snapshot(self, payload: dict) -> None:
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.snapshot_path.with_suffix(self.snapshot_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.snapshot_path)

    def load(self) -> dict[str, list[Position]]:
        """Positions per user. Returns empty dict if the file doesn't exist or is invalid."""
        if not self.snapshot_path.exists():
            self.logger.info("No positions snapshot found, starting fresh")
            return {}

        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self.logger.error("Failed to load positions snapshot: %s", e)
            return {}

        positions: dict[str, list[Position]] = {}
        for pos_data in data.get("open_positions", []):
            try:
                position = Position.from_dict(pos_data)
            except TypeError as e:
                self.logger.warning("Failed to restore position %s: %s", pos_data.get("address", "?"), e)
                continue
            if position.is_terminal:
                continue
            positions.setdefault(position.user_id, []).append(position)
            self.logger.info(
                "Restored position: %s (%s) for %s, state %s",
                position.symbol, position.address[:8], position.user_id, position.state.value,
            )

        self.logger.info("Restored %d positions from snapshot", sum(len(v) for v in positions.values()))
        return positions

    def clear_snapshot(self) -> None:
        if self.snapshot_path.exists():
            self._write_snapshot({"ts": 0, "open_positions": []})
            self.logger.info("Positions snapshot cleared")
