"""
Medical keyword extraction.

Scans already-sanitized dictation against fixed vocabularies (anatomy,
modality, symptom/condition, abbreviations) and pulls out ICD-10-shaped and
radiology-CPT-shaped codes. The result drives reference-context retrieval.
"""

import re
from functools import lru_cache

ANATOMY_TERMS = (
    # head and neck
    'head', 'neck', 'skull', 'brain', 'cerebral', 'cranial', 'facial', 'sinus', 'nasal', 'orbit',
    'eye', 'ocular', 'ear', 'temporal', 'jaw', 'mandible', 'maxilla', 'throat', 'pharynx', 'larynx',
    'thyroid', 'cervical',
    # upper extremities
    'shoulder', 'arm', 'elbow', 'forearm', 'wrist', 'hand', 'finger', 'thumb', 'humerus', 'radius',
    'ulna', 'carpal', 'metacarpal', 'phalanges',
    # torso
    'chest', 'thorax', 'thoracic', 'rib', 'sternum', 'clavicle', 'scapula', 'abdomen', 'abdominal',
    'pelvis', 'pelvic', 'hip', 'back', 'spine', 'spinal', 'vertebra', 'vertebral', 'lumbar', 'sacral',
    'coccyx', 'disc',
    # lower extremities
    'leg', 'thigh', 'knee', 'patella', 'tibia', 'fibula', 'ankle', 'foot', 'toe', 'heel', 'femur',
    'tarsal', 'metatarsal',
    # internal organs
    'liver', 'hepatic', 'kidney', 'renal', 'spleen', 'splenic', 'pancreas', 'pancreatic',
    'gallbladder', 'biliary', 'bladder', 'urinary', 'uterus', 'uterine', 'ovary', 'ovarian',
    'prostate', 'prostatic', 'testis', 'testicular', 'lung', 'pulmonary', 'heart', 'cardiac',
    'aorta', 'aortic', 'artery', 'arterial', 'vein', 'venous', 'intestine', 'intestinal',
    'colon', 'colonic', 'rectum', 'rectal', 'stomach', 'gastric', 'esophagus', 'esophageal',
)

MODALITY_TERMS = (
    'x-ray', 'xray', 'radiograph', 'radiography', 'plain film',
    'ct', 'cat scan', 'computed tomography', 'ct scan', 'ct angiogram', 'cta',
    'mri', 'magnetic resonance', 'mr', 'fmri', 'mr angiogram', 'mra', 'mrcp',
    'ultrasound', 'sonogram', 'sonography', 'doppler', 'echocardiogram', 'echo',
    'pet', 'pet scan', 'pet-ct', 'nuclear medicine', 'spect', 'bone scan',
    'angiogram', 'angiography', 'venogram', 'venography', 'arteriogram',
    'mammogram', 'mammography', 'dexa', 'bone density', 'fluoroscopy', 'myelogram',
    'discogram', 'arthrogram',
)

SYMPTOM_TERMS = (
    # pain
    'pain', 'ache', 'discomfort', 'tenderness', 'burning', 'radiating', 'radiculopathy',
    'sciatica', 'numbness', 'weakness', 'tingling', 'chronic', 'acute',
    # inflammation
    'swelling', 'inflammation', 'edema', 'effusion', 'enlarged', 'hypertrophy',
    # trauma
    'fracture', 'sprain', 'strain', 'tear', 'rupture', 'dislocation', 'subluxation',
    'trauma', 'injury', 'wound', 'laceration',
    # growths
    'mass', 'tumor', 'cancer', 'malignancy', 'metastatic', 'metastasis', 'neoplasm', 'lesion',
    'nodule', 'cyst', 'polyp',
    # infection
    'infection', 'abscess', 'cellulitis', 'osteomyelitis', 'septic',
    # vascular
    'bleeding', 'hemorrhage', 'clot', 'thrombus', 'embolism', 'ischemia', 'infarct',
    'stenosis', 'obstruction', 'occlusion', 'aneurysm', 'dissection',
    # stones
    'stone', 'calculus', 'calcification', 'lithiasis',
    # degenerative
    'arthritis', 'osteoarthritis', 'degeneration', 'degenerative', 'herniation', 'herniated',
    'bulging', 'protrusion', 'spondylosis', 'spondylolisthesis',
    # other
    'pneumonia', 'bronchitis', 'copd', 'asthma', 'fibrosis', 'emphysema',
    'stroke', 'tia', 'seizure', 'epilepsy', 'dementia', 'headache', 'migraine',
    'diabetes', 'hypertension', 'atherosclerosis',
    'gastritis', 'gerd', 'ulcer', 'colitis', 'diverticulitis', 'appendicitis',
    'nephritis', 'pyelonephritis', 'renal failure', 'urolithiasis',
    'hepatitis', 'cirrhosis', 'cholecystitis', 'pancreatitis',
)

ABBREVIATION_TERMS = (
    'ca', 'dx', 'fx', 'hx', 'px', 'rx', 'sx', 'tx',
    'ap', 'pa', 'lat', 'bilat', 'w/', 'w/o', 's/p',
    'r/o', 'c/o', 'h/o', 'p/o', 'ddd', 'djd', 'lbp',
)

# Colloquial phrases that imply a more specific anatomic keyword
IMPLIED_TERMS = {
    'low back': 'lumbar',
    'lower back': 'lumbar',
    'lbp': 'lumbar',
    'ddd': 'degenerative',
    'upper back': 'thoracic',
    'neck pain': 'cervical',
}

ICD10_RE = re.compile(r'\b[A-Z]\d{2}(?:\.[0-9A-Z]{1,4})?\b')
CPT_RE = re.compile(r'\b\d{5}\b')
# Radiology CPT codes live in the 7xxxx range; 9xxxx covers nuclear cardiology/vascular studies
CPT_RADIOLOGY_PREFIXES = ('7', '9')


@lru_cache(maxsize=None)
def _term_pattern(term):
    # \b does not work for terms ending in '/', so use explicit word-char lookarounds
    return re.compile(r'(?<!\w)' + re.escape(term) + r'(?!\w)', re.IGNORECASE)


def _vocabulary():
    return ANATOMY_TERMS + MODALITY_TERMS + SYMPTOM_TERMS + ABBREVIATION_TERMS


CLINICAL_VOCABULARY = frozenset(
    word
    for term in ANATOMY_TERMS + MODALITY_TERMS + SYMPTOM_TERMS
    for word in term.split()
)


def extract_codes(text):
    """ICD-10-shaped tokens plus 5-digit numbers that look like radiology CPT codes."""
    codes = ICD10_RE.findall(text)
    codes.extend(c for c in CPT_RE.findall(text) if c.startswith(CPT_RADIOLOGY_PREFIXES))
    return codes


def extract_keywords(text):
    """
    Return the de-duplicated, lower-cased set of medical keywords in `text`.

    Pure and side-effect free; one linear scan of the text per vocabulary term.
    """
    if not text:
        return set()

    keywords = set()
    for term in _vocabulary():
        if _term_pattern(term).search(text):
            keywords.add(term.lower())

    for phrase, implied in IMPLIED_TERMS.items():
        if _term_pattern(phrase).search(text):
            keywords.add(implied)

    keywords.update(code.lower() for code in extract_codes(text))
    return keywords


def categorize_keywords(keywords):
    """Split keywords into the buckets the reference-context search uses."""
    buckets = {'anatomy': [], 'modalities': [], 'symptoms': [], 'codes': [], 'other': []}
    code_shapes = {c.lower() for c in extract_codes(' '.join(k.upper() for k in keywords))}
    for keyword in sorted(keywords):
        if keyword in ANATOMY_TERMS:
            buckets['anatomy'].append(keyword)
        elif keyword in MODALITY_TERMS:
            buckets['modalities'].append(keyword)
        elif keyword in SYMPTOM_TERMS:
            buckets['symptoms'].append(keyword)
        elif keyword in code_shapes:
            buckets['codes'].append(keyword)
        else:
            buckets['other'].append(keyword)
    return buckets
