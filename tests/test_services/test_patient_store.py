"""
Tests for the patient snapshot store.
"""

import json

from medguard.services.patient_store import PatientStore


def test_bundled_snapshot(patient_store: PatientStore):
    """Test the bundled patient snapshot loads."""
    assert len(patient_store) == 5
    assert "P001" in patient_store
    assert patient_store.get_patient("P001")["age"] == 72
    assert patient_store.get_history("P001")["medication_adherence"] == "good"
    assert patient_store.get_history("P005") is None
    assert patient_store.get_patient("P999") is None


def test_from_file(tmp_path):
    """Test loading a snapshot from a file."""
    path = tmp_path / "patients.json"
    path.write_text(json.dumps({
        "patients": [{"patient_id": "X1", "age": 50}],
        "medical_histories": [],
    }))

    store = PatientStore.from_file(path)

    assert len(store) == 1
    assert store.get_patient("X1")["age"] == 50


def test_missing_or_corrupt_file_yields_empty_store(tmp_path):
    """Test a missing or corrupt file yields an empty store."""
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")

    assert len(PatientStore.from_file(tmp_path / "missing.json")) == 0
    assert len(PatientStore.from_file(corrupt)) == 0
