"""
Typed request structs: the only shape the business layer consumes.

Every parser's transform() returns one of these. Services never touch the
raw request body.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ValidationRequest:
    dictation_text: str
    user_id: int
    org_id: int
    patient_info: dict = field(default_factory=dict)
    order_id: Optional[int] = None
    is_override_validation: bool = False
    radiology_organization_id: Optional[int] = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class FinalizeOrderRequest:
    """
    Patch struct for finalize.

    Only the fields listed here may be written. `fields_set` records which of
    them the request actually carried, so an absent key leaves the stored
    value alone while an explicit empty value overwrites it.
    """

    clinical_indication: str = ''
    final_cpt_code: str = ''
    final_cpt_code_description: str = ''
    final_icd10_codes: list[str] = field(default_factory=list)
    final_icd10_code_descriptions: list[str] = field(default_factory=list)
    final_validation_status: str = ''
    final_compliance_score: Optional[int] = None
    overridden: bool = False
    override_justification: str = ''
    is_urgent_override: bool = False
    signature_data: str = ''
    is_temporary_patient: bool = False
    patient_info: dict = field(default_factory=dict)
    fields_set: frozenset = frozenset()
    raw_payload: Any = field(default=None, repr=False)

    # Order columns a finalize may write, in the order they are applied
    ORDER_FIELDS = (
        'clinical_indication',
        'final_cpt_code',
        'final_cpt_code_description',
        'final_icd10_codes',
        'final_icd10_code_descriptions',
        'final_validation_status',
        'final_compliance_score',
        'overridden',
        'override_justification',
        'is_urgent_override',
    )

    def has(self, name: str) -> bool:
        return name in self.fields_set

    def order_updates(self) -> dict:
        return {name: getattr(self, name) for name in self.ORDER_FIELDS if self.has(name)}


@dataclass
class StatusUpdateRequest:
    new_status: str
    notes: str = ''
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class InformationRequestPayload:
    requested_info_type: str
    details: str = ''
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class OverrideRequest:
    justification: str
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class CancelRequest:
    reason: str = ''
    raw_payload: Any = field(default=None, repr=False)
