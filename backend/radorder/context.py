"""
Reference context for the validation prompt.

Looks the extracted keywords up in the ICD-10 / CPT catalogue and the
appropriateness mappings, then formats the hits as a plain-text block.
"""

import logging
from functools import reduce
from operator import or_

from django.db.models import Q

from .keywords import categorize_keywords
from .models import CPTCode, CptIcd10Mapping, ICD10Code

logger = logging.getLogger(__name__)

NO_CONTEXT_TEXT = 'No specific medical context found in the input text.'

ICD10_LIMIT = 10
CPT_LIMIT = 10
MAPPING_LIMIT = 10


def _any_field_contains(keywords, fields):
    return reduce(or_, (Q(**{f'{field}__icontains': kw}) for kw in keywords for field in fields), Q())


def _search_icd10(keywords, codes):
    query = _any_field_contains(keywords, ('description', 'clinical_notes', 'keywords'))
    if codes:
        query |= Q(code__in=[c.upper() for c in codes])
    return list(ICD10Code.objects.filter(query).order_by('code')[:ICD10_LIMIT])


def _search_cpt(keywords, codes):
    query = _any_field_contains(keywords, ('description', 'modality', 'body_part'))
    if codes:
        query |= Q(code__in=codes)
    return list(CPTCode.objects.filter(query).order_by('code')[:CPT_LIMIT])


def _search_mappings(icd10_rows, cpt_rows):
    if not icd10_rows and not cpt_rows:
        return []
    return list(
        CptIcd10Mapping.objects
        .filter(Q(icd10__in=icd10_rows) | Q(cpt__in=cpt_rows))
        .select_related('icd10', 'cpt')
        .order_by('-appropriateness', 'icd10__code', 'cpt__code')[:MAPPING_LIMIT]
    )


def format_reference_context(icd10_rows, cpt_rows, mappings):
    sections = []
    if icd10_rows:
        lines = ['POSSIBLY RELEVANT ICD-10 CODES:']
        for row in icd10_rows:
            line = f'- {row.code}: {row.description}'
            if row.primary_imaging:
                line += f' (primary imaging: {row.primary_imaging})'
            lines.append(line)
        sections.append('\n'.join(lines))
    if cpt_rows:
        lines = ['POSSIBLY RELEVANT CPT CODES:']
        for row in cpt_rows:
            extra = ', '.join(v for v in (row.modality, row.body_part) if v)
            lines.append(f'- {row.code}: {row.description}' + (f' ({extra})' if extra else ''))
        sections.append('\n'.join(lines))
    if mappings:
        lines = ['APPROPRIATENESS MAPPINGS (1-9, higher is more appropriate):']
        for m in mappings:
            lines.append(f'- {m.icd10.code} -> {m.cpt.code}: {m.appropriateness}')
        sections.append('\n'.join(lines))
    return '\n\n'.join(sections) if sections else NO_CONTEXT_TEXT


def generate_reference_context(keywords):
    """Build the reference-context block for a set of extracted keywords."""
    if not keywords:
        return NO_CONTEXT_TEXT

    buckets = categorize_keywords(keywords)
    terms = sorted(set(keywords) - set(buckets['codes']))
    codes = buckets['codes']

    icd10_rows = _search_icd10(terms, codes) if terms or codes else []
    cpt_rows = _search_cpt(terms, codes) if terms or codes else []
    mappings = _search_mappings(icd10_rows, cpt_rows)

    logger.info(
        "[Context] keywords=%d icd10=%d cpt=%d mappings=%d",
        len(keywords), len(icd10_rows), len(cpt_rows), len(mappings),
    )
    return format_reference_context(icd10_rows, cpt_rows, mappings)
