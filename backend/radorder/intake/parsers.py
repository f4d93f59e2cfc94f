"""
Concrete request parsers.

Registered kinds:
  validate        - ValidationParser       -> ValidationRequest
  finalize        - FinalizeParser         -> FinalizeOrderRequest
  status          - StatusUpdateParser     -> StatusUpdateRequest
  request_info    - InformationRequestParser -> InformationRequestPayload
  override        - OverrideParser         -> OverrideRequest
  cancel          - CancelParser           -> CancelRequest

Wire keys are camelCase; struct fields are snake_case.
"""

from ..models import OrderStatus, ValidationStatus
from .base import CPT_RE, ICD10_RE, BaseRequestParser
from .types import (
    CancelRequest,
    FinalizeOrderRequest,
    InformationRequestPayload,
    OverrideRequest,
    StatusUpdateRequest,
    ValidationRequest,
)

RADIOLOGY_SETTABLE_STATUSES = (OrderStatus.SCHEDULED, OrderStatus.COMPLETED, OrderStatus.CANCELLED)
INFO_TYPES = ('clinical', 'labs', 'prior_imaging', 'insurance', 'demographics', 'other')


# ── ValidationParser ───────────────────────────────────────────────────────
#
# {
#   "dictationText": "72-year-old male with low back pain ...",
#   "patientInfo": {"id": 12},
#   "orderId": 40,                       // optional, re-validation
#   "isOverrideValidation": false,
#   "radiologyOrganizationId": 7
# }
# userId / orgId come from the caller identity, not the body.

class ValidationParser(BaseRequestParser):
    kind = "validate"
    allowed_keys = frozenset({
        "dictationText", "patientInfo", "orderId", "isOverrideValidation", "radiologyOrganizationId",
    })

    def transform(self) -> ValidationRequest:
        return ValidationRequest(
            dictation_text=self.string("dictationText", required=True),
            patient_info=self.obj("patientInfo"),
            order_id=self.integer("orderId", minimum=1),
            is_override_validation=self.boolean("isOverrideValidation"),
            radiology_organization_id=self.integer("radiologyOrganizationId", minimum=1),
            user_id=self._context.get("user_id"),
            org_id=self._context.get("org_id"),
            raw_payload=self._parsed,
        )

    def validate(self, request: ValidationRequest) -> None:
        super().validate(request)
        if request.is_override_validation and request.order_id is None:
            self.error("orderId", "Override validation needs the order being re-validated.")


# ── FinalizeParser ─────────────────────────────────────────────────────────
#
# Every key is optional; absent keys leave the stored value untouched.

_FINALIZE_KEYS = {
    "clinicalIndication": "clinical_indication",
    "finalCPTCode": "final_cpt_code",
    "finalCPTCodeDescription": "final_cpt_code_description",
    "finalICD10Codes": "final_icd10_codes",
    "finalICD10CodeDescriptions": "final_icd10_code_descriptions",
    "finalValidationStatus": "final_validation_status",
    "finalComplianceScore": "final_compliance_score",
    "overridden": "overridden",
    "overrideJustification": "override_justification",
    "isUrgentOverride": "is_urgent_override",
    "signatureData": "signature_data",
    "isTemporaryPatient": "is_temporary_patient",
    "patientInfo": "patient_info",
}


class FinalizeParser(BaseRequestParser):
    kind = "finalize"
    allowed_keys = frozenset(_FINALIZE_KEYS)

    def transform(self) -> FinalizeOrderRequest:
        present = frozenset(_FINALIZE_KEYS[k] for k in self._parsed if k in _FINALIZE_KEYS)
        return FinalizeOrderRequest(
            clinical_indication=self.string("clinicalIndication"),
            final_cpt_code=self.string("finalCPTCode"),
            final_cpt_code_description=self.string("finalCPTCodeDescription"),
            final_icd10_codes=self.string_list("finalICD10Codes"),
            final_icd10_code_descriptions=self.string_list("finalICD10CodeDescriptions"),
            final_validation_status=self.string("finalValidationStatus"),
            final_compliance_score=self.integer("finalComplianceScore"),
            overridden=self.boolean("overridden"),
            override_justification=self.string("overrideJustification"),
            is_urgent_override=self.boolean("isUrgentOverride"),
            signature_data=self.string("signatureData"),
            is_temporary_patient=self.boolean("isTemporaryPatient"),
            patient_info=self.obj("patientInfo"),
            fields_set=present,
            raw_payload=self._parsed,
        )

    def validate(self, request: FinalizeOrderRequest) -> None:
        super().validate(request)

        if request.final_cpt_code and not CPT_RE.match(request.final_cpt_code):
            self.error("finalCPTCode", f"Invalid CPT code: {request.final_cpt_code!r}.")

        for i, code in enumerate(request.final_icd10_codes):
            if not ICD10_RE.match(code):
                self.error(f"finalICD10Codes[{i}]", f"Invalid ICD-10 code: {code!r}.")

        if (request.has("final_icd10_code_descriptions")
                and len(request.final_icd10_code_descriptions) != len(request.final_icd10_codes)):
            self.error("finalICD10CodeDescriptions", "Must have one description per ICD-10 code.")

        if request.final_validation_status and request.final_validation_status not in ValidationStatus.values:
            self.error(
                "finalValidationStatus",
                f"Must be one of {sorted(ValidationStatus.values)}.",
            )

        score = request.final_compliance_score
        if score is not None and not 0 <= score <= 100:
            self.error("finalComplianceScore", "Must be between 0 and 100.")

        if request.overridden and not request.override_justification:
            self.error("overrideJustification", "Required when overridden is true.")

        if request.is_temporary_patient and not request.patient_info:
            self.error("patientInfo", "Required when isTemporaryPatient is true.")


# ── StatusUpdateParser ─────────────────────────────────────────────────────
#
# { "newStatus": "scheduled", "notes": "booked for Tuesday" }

class StatusUpdateParser(BaseRequestParser):
    kind = "status"
    allowed_keys = frozenset({"newStatus", "notes"})

    def transform(self) -> StatusUpdateRequest:
        return StatusUpdateRequest(
            new_status=self.string("newStatus", required=True),
            notes=self.string("notes"),
            raw_payload=self._parsed,
        )

    def validate(self, request: StatusUpdateRequest) -> None:
        super().validate(request)
        if request.new_status and request.new_status not in RADIOLOGY_SETTABLE_STATUSES:
            self.error("newStatus", f"Must be one of {[s.value for s in RADIOLOGY_SETTABLE_STATUSES]}.")


# ── InformationRequestParser ───────────────────────────────────────────────
#
# { "requestedInfoType": "labs", "details": "recent creatinine" }

class InformationRequestParser(BaseRequestParser):
    kind = "request_info"
    allowed_keys = frozenset({"requestedInfoType", "details"})

    def transform(self) -> InformationRequestPayload:
        return InformationRequestPayload(
            requested_info_type=self.string("requestedInfoType", required=True),
            details=self.string("details"),
            raw_payload=self._parsed,
        )

    def validate(self, request: InformationRequestPayload) -> None:
        super().validate(request)
        if request.requested_info_type and request.requested_info_type not in INFO_TYPES:
            self.error("requestedInfoType", f"Must be one of {list(INFO_TYPES)}.")


# ── OverrideParser ─────────────────────────────────────────────────────────
#
# { "justification": "history of known metastatic disease" }
# An empty justification is a business rule (MissingRequiredData), not a
# malformed body, so only the type is checked here.

class OverrideParser(BaseRequestParser):
    kind = "override"
    allowed_keys = frozenset({"justification"})

    def transform(self) -> OverrideRequest:
        return OverrideRequest(
            justification=self.string("justification"),
            raw_payload=self._parsed,
        )


class CancelParser(BaseRequestParser):
    kind = "cancel"
    allowed_keys = frozenset({"reason"})

    def transform(self) -> CancelRequest:
        return CancelRequest(reason=self.string("reason"), raw_payload=self._parsed)
