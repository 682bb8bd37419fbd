"""
Read-only patient snapshot loaded from a JSON file.

The file holds two arrays, ``patients`` and ``medical_histories``, each keyed
by ``patient_id``. Records are returned as plain dicts; derivation happens in
the patient context subagent.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from medguard.core.logging import get_logger

logger = get_logger(__name__)


class PatientStore:
    """In-memory lookup over a patient records snapshot."""

    def __init__(
        self,
        patients: Optional[list[dict[str, Any]]] = None,
        histories: Optional[list[dict[str, Any]]] = None,
    ):
        self._patients = {p["patient_id"]: p for p in patients or []}
        self._histories = {h["patient_id"]: h for h in histories or []}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PatientStore":
        """Load a snapshot. A missing or unreadable file yields an empty store."""
        path = Path(path)
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load patient data: {e}", extra={"path": str(path)})
            return cls()

        store = cls(data.get("patients", []), data.get("medical_histories", []))
        logger.info(
            "Patient snapshot loaded",
            extra={"path": str(path), "patients": len(store)}
        )
        return store

    def __len__(self) -> int:
        return len(self._patients)

    def __contains__(self, patient_id: str) -> bool:
        return patient_id in self._patients

    def get_patient(self, patient_id: str) -> Optional[dict[str, Any]]:
        return self._patients.get(patient_id)

    def get_history(self, patient_id: str) -> Optional[dict[str, Any]]:
        return self._histories.get(patient_id)
