import logging
from datetime import date

from .exceptions import ValidationError
from .models import Patient

logger = logging.getLogger(__name__)

TEMPORARY_PATIENT_FIELDS = (
    'first_name', 'last_name', 'gender', 'address_line1', 'address_line2',
    'city', 'state', 'zip_code', 'phone_number', 'email', 'mrn',
)


def create_temporary_patient(organization_id, patient_info):
    """
    Create a walk-in patient record owned by the referring organization.

    `patient_info` is the dict from the finalize request; first_name and
    last_name are required, date_of_birth (ISO date) is optional.
    """
    patient_info = patient_info or {}
    missing = [f for f in ('first_name', 'last_name') if not str(patient_info.get(f) or '').strip()]
    if missing:
        raise ValidationError(
            message='Temporary patient requires a first and last name',
            code='TEMPORARY_PATIENT_INCOMPLETE',
            detail={'missing_fields': missing},
        )

    dob = patient_info.get('date_of_birth')
    if isinstance(dob, str) and dob:
        try:
            dob = date.fromisoformat(dob)
        except ValueError:
            raise ValidationError(
                message='date_of_birth must be an ISO date (YYYY-MM-DD)',
                code='TEMPORARY_PATIENT_INCOMPLETE',
                detail={'date_of_birth': dob},
            )

    patient = Patient.objects.create(
        organization_id=organization_id,
        date_of_birth=dob or None,
        is_temporary=True,
        **{f: str(patient_info.get(f) or '').strip() for f in TEMPORARY_PATIENT_FIELDS},
    )
    logger.info("[Patients] temporary patient %s created for org %s", patient.id, organization_id)
    return patient
