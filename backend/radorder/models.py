from django.db import models


class OrderStatus(models.TextChoices):
    """Order lifecycle vocabulary."""

    DRAFT = 'draft', 'Draft'
    VALIDATED = 'validated', 'Validated'
    VALIDATION_FAILED = 'validation_failed', 'Validation failed'
    PENDING_ADMIN = 'pending_admin', 'Pending admin'
    PENDING_RADIOLOGY = 'pending_radiology', 'Pending radiology'
    SCHEDULED = 'scheduled', 'Scheduled'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class QueueStatus(models.TextChoices):
    """
    Queue-facing vocabulary shown to radiology staff.

    Shares the spellings 'completed' / 'cancelled' with OrderStatus but is a
    separate enum; convert with radorder.lifecycle.queue_status_for().
    """

    PENDING_REVIEW = 'pending_review', 'Pending review'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class ValidationStatus(models.TextChoices):
    APPROPRIATE = 'appropriate', 'Appropriate'
    NEEDS_CLARIFICATION = 'needs_clarification', 'Needs clarification'
    INAPPROPRIATE = 'inappropriate', 'Inappropriate'
    OVERRIDE = 'override', 'Override'


class OrderPriority(models.TextChoices):
    ROUTINE = 'routine', 'Routine'
    STAT = 'stat', 'STAT'


class Patient(models.Model):
    organization_id = models.BigIntegerField()
    mrn = models.CharField(max_length=50, blank=True, default='')
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(blank=True, null=True)
    gender = models.CharField(max_length=20, blank=True, default='')
    address_line1 = models.CharField(max_length=200, blank=True, default='')
    address_line2 = models.CharField(max_length=200, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    state = models.CharField(max_length=50, blank=True, default='')
    zip_code = models.CharField(max_length=20, blank=True, default='')
    phone_number = models.CharField(max_length=30, blank=True, default='')
    email = models.CharField(max_length=200, blank=True, default='')
    is_temporary = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'


class PatientInsurance(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='insurance')
    is_primary = models.BooleanField(default=False)
    insurer_name = models.CharField(max_length=200, blank=True, default='')
    policy_number = models.CharField(max_length=100, blank=True, default='')
    group_number = models.CharField(max_length=100, blank=True, default='')
    policy_holder_name = models.CharField(max_length=200, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient_insurance'


class Order(models.Model):
    order_number = models.CharField(max_length=50, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, blank=True, null=True, related_name='orders')
    referring_organization_id = models.BigIntegerField()
    radiology_organization_id = models.BigIntegerField(blank=True, null=True)
    status = models.CharField(max_length=30, choices=OrderStatus.choices, default=OrderStatus.DRAFT)
    priority = models.CharField(max_length=20, choices=OrderPriority.choices, default=OrderPriority.ROUTINE)

    original_dictation = models.TextField(blank=True, default='')
    clinical_indication = models.TextField(blank=True, default='')
    final_cpt_code = models.CharField(max_length=20, blank=True, default='')
    final_cpt_code_description = models.TextField(blank=True, default='')
    final_icd10_codes = models.JSONField(default=list, blank=True)
    final_icd10_code_descriptions = models.JSONField(default=list, blank=True)
    final_validation_status = models.CharField(
        max_length=30, choices=ValidationStatus.choices, blank=True, default='',
    )
    final_compliance_score = models.IntegerField(blank=True, null=True)

    overridden = models.BooleanField(default=False)
    override_justification = models.TextField(blank=True, default='')
    is_urgent_override = models.BooleanField(default=False)

    signed_by_user_id = models.BigIntegerField(blank=True, null=True)
    signature_date = models.DateTimeField(blank=True, null=True)
    signature_file_key = models.CharField(max_length=300, blank=True, default='')

    # Snapshot taken when the order is handed to radiology
    insurance_provider = models.CharField(max_length=200, blank=True, default='')
    insurance_policy_number = models.CharField(max_length=100, blank=True, default='')

    created_by_user_id = models.BigIntegerField()
    updated_by_user_id = models.BigIntegerField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    validated_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'orders'


class OrderHistory(models.Model):
    """Append-only audit trail of lifecycle events."""

    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name='history')
    user_id = models.BigIntegerField()
    event_type = models.CharField(max_length=50)
    previous_status = models.CharField(max_length=30, blank=True, default='')
    new_status = models.CharField(max_length=30, blank=True, default='')
    details = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'order_history'
        ordering = ['id']


class ValidationAttempt(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.PROTECT, blank=True, null=True, related_name='validation_attempts',
    )
    attempt_number = models.PositiveIntegerField()
    validation_input_text = models.TextField()
    validation_outcome = models.CharField(max_length=30, choices=ValidationStatus.choices)
    # JSON-encoded string arrays, e.g. '["M54.50"]'
    generated_icd10_codes = models.TextField(default='[]')
    generated_cpt_codes = models.TextField(default='[]')
    generated_feedback_text = models.TextField(blank=True, default='')
    generated_compliance_score = models.IntegerField()
    user_id = models.BigIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'validation_attempts'
        ordering = ['order_id', 'attempt_number']
        constraints = [
            models.UniqueConstraint(fields=['order', 'attempt_number'], name='uniq_order_attempt_number'),
        ]


class LLMValidationLog(models.Model):
    """One row per provider call, successful or not."""

    order = models.ForeignKey(Order, on_delete=models.SET_NULL, blank=True, null=True)
    validation_attempt = models.ForeignKey(
        ValidationAttempt, on_delete=models.SET_NULL, blank=True, null=True, related_name='llm_calls',
    )
    provider = models.CharField(max_length=50)
    model = models.CharField(max_length=100)
    succeeded = models.BooleanField(default=False)
    error_type = models.CharField(max_length=100, blank=True, default='')
    prompt_tokens = models.IntegerField(default=0)
    completion_tokens = models.IntegerField(default=0)
    total_tokens = models.IntegerField(default=0)
    latency_ms = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'llm_validation_logs'


class PromptTemplate(models.Model):
    name = models.CharField(max_length=100)
    version = models.PositiveIntegerField(default=1)
    content_template = models.TextField()
    word_limit = models.PositiveIntegerField(blank=True, null=True)
    active = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'prompt_templates'
        constraints = [
            models.UniqueConstraint(fields=['name', 'version'], name='uniq_prompt_template_version'),
        ]


class ICD10Code(models.Model):
    code = models.CharField(max_length=10, unique=True)
    description = models.TextField()
    clinical_notes = models.TextField(blank=True, default='')
    keywords = models.TextField(blank=True, default='')
    primary_imaging = models.CharField(max_length=200, blank=True, default='')

    class Meta:
        db_table = 'medical_icd10_codes'


class CPTCode(models.Model):
    code = models.CharField(max_length=10, unique=True)
    description = models.TextField()
    modality = models.CharField(max_length=50, blank=True, default='')
    body_part = models.CharField(max_length=100, blank=True, default='')

    class Meta:
        db_table = 'medical_cpt_codes'


class CptIcd10Mapping(models.Model):
    icd10 = models.ForeignKey(ICD10Code, on_delete=models.CASCADE, related_name='mappings')
    cpt = models.ForeignKey(CPTCode, on_delete=models.CASCADE, related_name='mappings')
    appropriateness = models.PositiveSmallIntegerField(default=5)  # 1-9, ACR scale
    evidence_source = models.CharField(max_length=200, blank=True, default='')

    class Meta:
        db_table = 'medical_cpt_icd10_mappings'


class InformationRequest(models.Model):
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name='information_requests')
    requested_by_user_id = models.BigIntegerField()
    requesting_organization_id = models.BigIntegerField()
    target_organization_id = models.BigIntegerField()
    requested_info_type = models.CharField(max_length=50)
    requested_info_details = models.TextField(blank=True, default='')
    status = models.CharField(max_length=20, default='pending')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'information_requests'
