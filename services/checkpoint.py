import json
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List

from logger import get_logger
from models import utcnow


log = get_logger("checkpoint")

COUNTER_NAMES = ("processed", "successful", "failed", "skipped")


class CheckpointError(Exception):
    pass


@dataclass
class Checkpoint:
    """Cursor de reanudación de una ejecución por CLI."""

    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    last_processed_index: int = -1
    counters: Dict[str, int] = field(default_factory=lambda: {n: 0 for n in COUNTER_NAMES})
    timestamp: str = ""

    @property
    def done_codes(self):
        """Eventos que no deben volver a procesarse (éxitos y omitidos)."""
        return set(self.processed) | set(self.skipped)

    def start_index(self, skip=0):
        return max(skip or 0, self.last_processed_index + 1)

    def record(self, index, event_code, outcome, error=None):
        if outcome == "successful":
            if event_code not in self.processed:
                self.processed.append(event_code)
        elif outcome == "skipped":
            if event_code not in self.skipped:
                self.skipped.append(event_code)
        else:
            self.failed = [f for f in self.failed if f.get("code") != event_code]
            self.failed.append({"code": event_code, "error": error or ""})
        self.counters["processed"] = self.counters.get("processed", 0) + 1
        self.counters[outcome] = self.counters.get(outcome, 0) + 1
        self.last_processed_index = max(self.last_processed_index, index)

    def to_dict(self):
        return {
            "processedEventCodes": list(self.processed),
            "skippedEventCodes": list(self.skipped),
            "failedEventCodes": list(self.failed),
            "lastProcessedIndex": self.last_processed_index,
            "counters": dict(self.counters),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data):
        counters = {n: 0 for n in COUNTER_NAMES}
        counters.update({k: int(v) for k, v in (data.get("counters") or {}).items()})
        return cls(
            processed=list(data.get("processedEventCodes") or []),
            skipped=list(data.get("skippedEventCodes") or []),
            failed=list(data.get("failedEventCodes") or []),
            last_processed_index=int(data.get("lastProcessedIndex", -1)),
            counters=counters,
            timestamp=data.get("timestamp") or ""
        )


def load_checkpoint(path):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise CheckpointError(f"No se pudo leer el checkpoint {path}: {exc}") from exc
    checkpoint = Checkpoint.from_dict(data)
    log.info(
        "Checkpoint cargado: %s procesados, último índice %s",
        len(checkpoint.processed), checkpoint.last_processed_index
    )
    return checkpoint


def save_checkpoint(checkpoint, path):
    """Escritura atómica: archivo temporal en el mismo directorio + os.replace."""
    checkpoint.timestamp = utcnow().isoformat()
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".checkpoint-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(checkpoint.to_dict(), fh, indent=2)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return path
