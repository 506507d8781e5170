from __future__ import annotations
import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

@dataclass
class StoredState:
    # Last message id that was relayed and marked read.
    last_processed_message_id: Optional[str] = None
    # Next Telegram update id to request.
    update_offset: Optional[int] = None
    runs: int = 0

def load_state(path: Path) -> StoredState:
    if not path.exists():
        return StoredState()
    data = json.loads(path.read_text(encoding="utf-8"))
    # Unknown keys are ignored; camelCase keys come from older state files.
    offset = data.get("update_offset")
    last_id = data.get("last_processed_message_id") or data.get("lastProcessedMsgId")
    return StoredState(
        last_processed_message_id=last_id or None,
        update_offset=int(offset) if offset is not None else None,
        runs=int(data.get("runs") or 0),
    )

def save_state(path: Path, state: StoredState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(state), indent=2), encoding="utf-8")
    tmp.replace(path)
