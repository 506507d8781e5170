from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from signal_relay.models import NormalizedMail


def append_mail_log(
    path: Path, mails: Sequence[NormalizedMail], *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Append one {generatedAt, total, emails} record per processed batch.
    Observational only; the relay never reads it back.
    """
    record = {
        "generatedAt": (now or datetime.now(timezone.utc)).isoformat(),
        "total": len(mails),
        "emails": [m.to_dict() for m in mails],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False) + "\n")
    return record


def read_mail_log(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    with path.open(encoding="utf-8") as fh:
        return [json.loads(line) for line in fh if line.strip()]
