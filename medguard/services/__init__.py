"""Services for the MedGuard Interaction Engine."""

from medguard.services.drug_data_provider import (
    CircuitBreaker,
    DrugDataProvider,
    RxNormOpenFDAProvider,
)
from medguard.services.patient_store import PatientStore

__all__ = [
    "CircuitBreaker",
    "DrugDataProvider",
    "RxNormOpenFDAProvider",
    "PatientStore",
]
