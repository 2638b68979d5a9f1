"""State export, restore and on-disk snapshots."""

import json
import logging
import os
import shutil
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from leveraged_vaults.constants import STATE_DIR_NAME, STATE_VERSION
from leveraged_vaults.ledger import Ledger

logger = logging.getLogger(__name__)


def _state_path() -> Path:
    cache_home = os.getenv("XDG_CACHE_HOME")
    if cache_home:
        base = Path(cache_home)
    else:
        base = Path.home() / ".cache"
    return base / STATE_DIR_NAME


def get_state_dir() -> Path:
    """Get the snapshot directory path. Uses XDG_CACHE_HOME if available, otherwise ~/.cache."""
    state_dir = _state_path()
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def clear_state() -> None:
    """Delete all saved snapshots."""
    state_dir = _state_path()
    if state_dir.exists():
        shutil.rmtree(state_dir)
        print("✅ Saved state cleared successfully.", file=sys.stderr)
    else:
        print("ℹ️  State directory does not exist (nothing to clear).", file=sys.stderr)


def _participant_key(index: int, participant: Any) -> str:
    return f"{index}:{type(participant).__name__}"


def export_state(ledger: Ledger) -> dict[str, Any]:
    """JSON-serializable image of every participant registered with `ledger`."""
    if ledger.in_transaction:
        raise RuntimeError("cannot export state inside an open transaction")
    return {
        "version": STATE_VERSION,
        "timestamp": ledger.now(),
        "participants": {
            _participant_key(i, p): asdict(p.state) for i, p in enumerate(ledger.participants)
        },
    }


def _state_from_dict(state_type: type, data: dict[str, Any]) -> Any:
    from_dict = getattr(state_type, "from_dict", None)
    if from_dict is not None:
        return from_dict(data)
    return state_type(**data)


def restore_state(ledger: Ledger, data: dict[str, Any]) -> None:
    """Load an `export_state` image into a ledger whose participants were built in the same order."""
    if data.get("version") != STATE_VERSION:
        raise ValueError(f"unsupported state version {data.get('version')!r} (expected {STATE_VERSION})")
    saved = data["participants"]
    participants = ledger.participants
    expected = [_participant_key(i, p) for i, p in enumerate(participants)]
    if sorted(saved) != sorted(expected):
        raise ValueError("saved state does not match the participants registered with this ledger")

    restored = [_state_from_dict(type(p.state), saved[key]) for key, p in zip(expected, participants)]
    for participant, state in zip(participants, restored):
        participant.state = state
    logger.info("restored %d participants from snapshot at t=%s", len(participants), data.get("timestamp"))


def save_snapshot(name: str, data: dict[str, Any]) -> Path:
    """Write a state image under `name` in the state directory."""
    path = get_state_dir() / f"{name}.json"
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=None, separators=(",", ":"))
    return path


def load_snapshot(name: str) -> dict[str, Any] | None:
    """Read a saved state image. Returns None if no snapshot called `name` exists."""
    path = get_state_dir() / f"{name}.json"
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "participants" not in data:
        raise ValueError(f"corrupt snapshot: {path}")
    return data
