"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import json
from datetime import date

import factory
import pytest
from rest_framework.test import APIClient

from radorder.llm.gateway import LLMGateway
from radorder.llm.types import LLMResponse, ProviderCall, ProviderError
from radorder.models import (
    CPTCode,
    CptIcd10Mapping,
    ICD10Code,
    Order,
    OrderStatus,
    Patient,
    PatientInsurance,
    PromptTemplate,
    ValidationAttempt,
    ValidationStatus,
)

REFERRING_ORG = 10
RADIOLOGY_ORG = 20
PHYSICIAN_ID = 100
ADMIN_ID = 101
RADIOLOGY_USER_ID = 200

E2E_DICTATION = '72-year-old male with low back pain radiating to left leg, 3 weeks, h/o DDD'


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    organization_id = REFERRING_ORG
    mrn = factory.Sequence(lambda n: f'{100000 + n}')
    first_name = 'John'
    last_name = 'Doe'
    date_of_birth = date(1953, 1, 15)
    gender = 'male'
    address_line1 = '12 Main Street'
    city = 'Springfield'
    state = 'IL'
    zip_code = '62701'
    phone_number = '217-555-0100'


class PatientInsuranceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PatientInsurance

    patient = factory.SubFactory(PatientFactory)
    is_primary = True
    insurer_name = 'Blue Cross'
    policy_number = factory.Sequence(lambda n: f'POL{5000 + n}')


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    order_number = factory.Sequence(lambda n: f'ORD-TEST-{n:05d}')
    patient = factory.SubFactory(PatientFactory)
    referring_organization_id = REFERRING_ORG
    radiology_organization_id = RADIOLOGY_ORG
    status = OrderStatus.DRAFT
    original_dictation = E2E_DICTATION
    created_by_user_id = PHYSICIAN_ID


class ValidationAttemptFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ValidationAttempt

    order = factory.SubFactory(OrderFactory)
    attempt_number = factory.Sequence(lambda n: n + 1)
    validation_input_text = E2E_DICTATION
    validation_outcome = ValidationStatus.NEEDS_CLARIFICATION
    generated_icd10_codes = '["M54.50"]'
    generated_cpt_codes = '["72148"]'
    generated_feedback_text = 'Please document conservative therapy.'
    generated_compliance_score = 40
    user_id = PHYSICIAN_ID


class PromptTemplateFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PromptTemplate

    name = 'default-validation'
    version = factory.Sequence(lambda n: n + 1)
    content_template = (
        'Evaluate this imaging order.\n'
        'DICTATION:\n{{DICTATION_TEXT}}\n'
        'CONTEXT:\n{{DATABASE_CONTEXT}}\n'
        'Keep feedback under {{WORD_LIMIT}} words. Answer in JSON.'
    )
    word_limit = 50
    active = True
    is_default = True


class ICD10CodeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ICD10Code
        django_get_or_create = ('code',)

    code = 'M54.50'
    description = 'Low back pain, unspecified'
    clinical_notes = 'Lumbar pain without radiculopathy'
    keywords = 'back,lumbar,pain'
    primary_imaging = 'MRI lumbar spine'


class CPTCodeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CPTCode
        django_get_or_create = ('code',)

    code = '72148'
    description = 'MRI lumbar spine without contrast'
    modality = 'mri'
    body_part = 'lumbar spine'


class CptIcd10MappingFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CptIcd10Mapping

    icd10 = factory.SubFactory(ICD10CodeFactory)
    cpt = factory.SubFactory(CPTCodeFactory)
    appropriateness = 7


# ---------------------------------------------------------------------------
# LLM stubs
# ---------------------------------------------------------------------------

def llm_payload(status='appropriate', score=85, **overrides):
    body = {
        'validationStatus': status,
        'complianceScore': score,
        'feedback': 'Imaging is appropriate for persistent radicular low back pain.',
        'suggestedICD10Codes': [
            {'code': 'M54.50', 'description': 'Low back pain', 'isPrimary': True},
            {'code': 'M51.36', 'description': 'Lumbar disc degeneration', 'isPrimary': False},
        ],
        'suggestedCPTCodes': [
            {'code': '72148', 'description': 'MRI lumbar spine without contrast'},
        ],
        'internalReasoning': 'Radiating symptoms over several weeks.',
    }
    body.update(overrides)
    return body


def llm_content(status='appropriate', score=85, **overrides):
    return '```json\n' + json.dumps(llm_payload(status, score, **overrides)) + '\n```'


class StubProvider:
    """Provider double: returns `content` or raises ProviderError when `fail` is set."""

    def __init__(self, name, content=None, fail=False, model=None):
        self.name = name
        self.model = model or f'{name}-model'
        self.content = content
        self.fail = fail
        self.calls = 0

    def complete(self, prompt, timeout):
        self.calls += 1
        if self.fail:
            raise ProviderError(ProviderCall(
                provider=self.name, model=self.model, succeeded=False, latency_ms=3, error_type='APITimeoutError',
            ))
        return LLMResponse(
            provider=self.name, model=self.model, content=self.content,
            prompt_tokens=120, completion_tokens=80, total_tokens=200, latency_ms=12,
        )


def stub_gateway(*contents, failing=()):
    """
    Gateway whose providers answer in order.

    `failing` names providers that fail before the answering one, e.g.
    stub_gateway(llm_content(), failing=('anthropic',)) -> anthropic fails, grok answers.
    """
    providers = [StubProvider(name, fail=True) for name in failing]
    providers += [StubProvider(f'stub{i}', content=c) for i, c in enumerate(contents)]
    return LLMGateway(providers, timeout=5)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """DRF test client for integration tests."""
    return APIClient()


@pytest.fixture
def prompt_template(db):
    return PromptTemplateFactory()


@pytest.fixture
def reference_catalogue(db):
    return CptIcd10MappingFactory()


@pytest.fixture
def ready_patient(db):
    """Patient with a complete address, phone and primary insurance."""
    patient = PatientFactory()
    PatientInsuranceFactory(patient=patient)
    return patient


@pytest.fixture
def sample_finalize_payload():
    """Minimal valid body for POST /api/orders/<id>/finalize/."""
    return {
        'clinicalIndication': 'Low back pain radiating to left leg for 3 weeks',
        'finalCPTCode': '72148',
        'finalCPTCodeDescription': 'MRI lumbar spine without contrast',
        'finalICD10Codes': ['M54.50'],
        'finalICD10CodeDescriptions': ['Low back pain, unspecified'],
        'finalValidationStatus': 'appropriate',
        'finalComplianceScore': 85,
    }
