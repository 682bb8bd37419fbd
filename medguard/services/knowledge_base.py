"""
MedGuard Clinical Knowledge Base

Static, read-only reference tables keyed by lower-case generic drug name:
brand aliases, known critical interaction pairs, class-level interaction
rules, drug classes, allergy cross-reactivity, drug-disease cautions and
Beers-criteria flags for older adults.
"""

from typing import Any, Optional


# ============================================================================
# BRAND ALIASES
# ============================================================================

BRAND_ALIASES = {
    "coumadin": "warfarin",
    "jantoven": "warfarin",
    "advil": "ibuprofen",
    "motrin": "ibuprofen",
    "aleve": "naproxen",
    "naprosyn": "naproxen",
    "tylenol": "acetaminophen",
    "zoloft": "sertraline",
    "prozac": "fluoxetine",
    "lexapro": "escitalopram",
    "lipitor": "atorvastatin",
    "zocor": "simvastatin",
    "crestor": "rosuvastatin",
    "prilosec": "omeprazole",
    "nexium": "esomeprazole",
    "ultram": "tramadol",
    "baby aspirin": "aspirin",
    "asa": "aspirin",
    "bayer": "aspirin",
    "plavix": "clopidogrel",
    "glucophage": "metformin",
    "zestril": "lisinopril",
    "prinivil": "lisinopril",
    "norvasc": "amlodipine",
    "lopressor": "metoprolol",
    "toprol": "metoprolol",
    "synthroid": "levothyroxine",
    "cipro": "ciprofloxacin",
    "amoxil": "amoxicillin",
    "biaxin": "clarithromycin",
    "keflex": "cephalexin",
    "eliquis": "apixaban",
    "xarelto": "rivaroxaban",
    "lanoxin": "digoxin",
    "aldactone": "spironolactone",
    "celebrex": "celecoxib",
    "trexall": "methotrexate",
}


# ============================================================================
# DRUG CLASSES
# ============================================================================

DRUG_CLASSES = {
    # Anticoagulants & antiplatelets
    "warfarin": {"anticoagulant"},
    "apixaban": {"anticoagulant"},
    "rivaroxaban": {"anticoagulant"},
    "dabigatran": {"anticoagulant"},
    "heparin": {"anticoagulant"},
    "enoxaparin": {"anticoagulant"},
    "clopidogrel": {"antiplatelet"},
    "aspirin": {"nsaid", "antiplatelet"},

    # NSAIDs
    "ibuprofen": {"nsaid"},
    "naproxen": {"nsaid"},
    "diclofenac": {"nsaid"},
    "celecoxib": {"nsaid"},
    "meloxicam": {"nsaid"},
    "indomethacin": {"nsaid"},
    "ketorolac": {"nsaid"},

    # Antidepressants
    "sertraline": {"ssri"},
    "fluoxetine": {"ssri"},
    "paroxetine": {"ssri"},
    "citalopram": {"ssri"},
    "escitalopram": {"ssri"},

    # Opioids
    "tramadol": {"opioid"},
    "oxycodone": {"opioid"},
    "morphine": {"opioid"},
    "fentanyl": {"opioid"},

    # Cardiovascular
    "atorvastatin": {"statin"},
    "simvastatin": {"statin"},
    "rosuvastatin": {"statin"},
    "pravastatin": {"statin"},
    "lisinopril": {"ace_inhibitor"},
    "enalapril": {"ace_inhibitor"},
    "ramipril": {"ace_inhibitor"},
    "captopril": {"ace_inhibitor"},
    "metoprolol": {"beta_blocker"},
    "atenolol": {"beta_blocker"},
    "propranolol": {"beta_blocker"},
    "carvedilol": {"beta_blocker"},
    "amlodipine": {"calcium_channel_blocker"},
    "verapamil": {"calcium_channel_blocker"},
    "spironolactone": {"potassium_sparing_diuretic"},
    "digoxin": {"cardiac_glycoside"},

    # GI
    "omeprazole": {"ppi"},
    "pantoprazole": {"ppi"},
    "lansoprazole": {"ppi"},
    "esomeprazole": {"ppi"},

    # Anti-infectives
    "amoxicillin": {"penicillin"},
    "penicillin": {"penicillin"},
    "ampicillin": {"penicillin"},
    "piperacillin": {"penicillin"},
    "cephalexin": {"cephalosporin"},
    "ceftriaxone": {"cephalosporin"},
    "cefuroxime": {"cephalosporin"},
    "clarithromycin": {"macrolide"},
    "erythromycin": {"macrolide"},
    "azithromycin": {"macrolide"},
    "ciprofloxacin": {"fluoroquinolone"},
    "levofloxacin": {"fluoroquinolone"},
    "sulfamethoxazole": {"sulfonamide"},
    "nystatin": {"antifungal"},
    "trimethoprim": {"antifolate"},

    # Immunosuppressants
    "methotrexate": {"immunosuppressant"},
    "prednisone": {"immunosuppressant", "corticosteroid"},
    "tacrolimus": {"immunosuppressant"},
    "cyclosporine": {"immunosuppressant"},
    "azathioprine": {"immunosuppressant"},
    "mycophenolate": {"immunosuppressant"},

    # Other
    "metformin": {"biguanide"},
    "glipizide": {"sulfonylurea"},
    "glyburide": {"sulfonylurea"},
    "levothyroxine": {"thyroid_hormone"},
    "lithium": {"mood_stabilizer"},
    "phenytoin": {"anticonvulsant"},
    "theophylline": {"methylxanthine"},
    "acetaminophen": {"analgesic"},
    "diphenhydramine": {"antihistamine"},
    "diazepam": {"benzodiazepine"},
    "lorazepam": {"benzodiazepine"},
    "zolpidem": {"hypnotic"},
    "potassium": {"electrolyte"},
    "calcium": {"electrolyte"},
}

# Name-fragment heuristics for drugs missing from DRUG_CLASSES
CLASS_AFFIXES = (
    ("prefix", "cef", "cephalosporin"),
    ("prefix", "ceph", "cephalosporin"),
    ("suffix", "cillin", "penicillin"),
    ("suffix", "statin", "statin"),
    ("suffix", "pril", "ace_inhibitor"),
    ("suffix", "olol", "beta_blocker"),
    ("suffix", "prazole", "ppi"),
    ("suffix", "floxacin", "fluoroquinolone"),
    ("suffix", "thromycin", "macrolide"),
)

NARROW_THERAPEUTIC_INDEX = frozenset({
    "warfarin", "digoxin", "lithium", "phenytoin", "theophylline", "methotrexate",
})

# Classes whose members get "moderate" interaction potential
WATCH_LIST_CLASSES = frozenset({"ssri", "nsaid", "ace_inhibitor", "statin"})

# Classes compared for duplicate therapy
DUPLICATE_THERAPY_CLASSES = frozenset({
    "ssri", "statin", "ace_inhibitor", "beta_blocker", "ppi",
})


# ============================================================================
# KNOWN CRITICAL INTERACTIONS
# ============================================================================

KNOWN_INTERACTIONS = {
    ("warfarin", "aspirin"): {
        "severity": "MAJOR",
        "mechanism": "Pharmacodynamic synergism",
        "description": "Increased bleeding risk due to combined anticoagulant and antiplatelet effects",
        "clinical_significance": "Risk of major bleeding including GI and intracranial hemorrhage",
    },
    ("methotrexate", "trimethoprim"): {
        "severity": "MAJOR",
        "mechanism": "Decreased renal clearance",
        "description": "Trimethoprim inhibits methotrexate elimination leading to toxicity",
        "clinical_significance": "Bone marrow suppression, mucositis, hepatotoxicity",
    },
    ("sertraline", "tramadol"): {
        "severity": "MODERATE",
        "mechanism": "Serotonergic effects",
        "description": "Both drugs increase serotonin levels",
        "clinical_significance": "Risk of serotonin syndrome",
    },
    ("atorvastatin", "clarithromycin"): {
        "severity": "MODERATE",
        "mechanism": "CYP3A4 inhibition",
        "description": "Clarithromycin inhibits statin metabolism",
        "clinical_significance": "Increased risk of myopathy and rhabdomyolysis",
    },
    ("warfarin", "ibuprofen"): {
        "severity": "MAJOR",
        "mechanism": "Platelet inhibition and protein-binding displacement",
        "description": "NSAIDs inhibit platelet function and can displace warfarin from protein binding",
        "clinical_significance": "Increased bleeding risk and unpredictable INR elevation",
    },
    ("clopidogrel", "omeprazole"): {
        "severity": "MODERATE",
        "mechanism": "CYP2C19 inhibition",
        "description": "Omeprazole reduces conversion of clopidogrel to its active metabolite",
        "clinical_significance": "Reduced antiplatelet effect may increase cardiovascular event risk",
    },
    ("simvastatin", "amlodipine"): {
        "severity": "MODERATE",
        "mechanism": "CYP3A4 inhibition",
        "description": "Amlodipine increases simvastatin exposure",
        "clinical_significance": "Increased risk of rhabdomyolysis and myopathy",
    },
    ("ciprofloxacin", "theophylline"): {
        "severity": "MAJOR",
        "mechanism": "CYP1A2 inhibition",
        "description": "Ciprofloxacin reduces theophylline clearance",
        "clinical_significance": "Theophylline toxicity with seizures and arrhythmias",
    },
    ("fluoxetine", "tramadol"): {
        "severity": "MAJOR",
        "mechanism": "Serotonergic effects and CYP2D6 inhibition",
        "description": "Additive serotonin excess and reduced tramadol activation",
        "clinical_significance": "Risk of serotonin syndrome and seizures",
    },
    ("lisinopril", "spironolactone"): {
        "severity": "MODERATE",
        "mechanism": "Additive potassium retention",
        "description": "ACE inhibitors and potassium-sparing diuretics both raise serum potassium",
        "clinical_significance": "Risk of hyperkalemia with cardiac arrhythmia potential",
    },
    ("lisinopril", "potassium"): {
        "severity": "MODERATE",
        "mechanism": "Reduced potassium excretion",
        "description": "ACE inhibitors reduce aldosterone, decreasing potassium excretion",
        "clinical_significance": "Risk of hyperkalemia with cardiac arrhythmia potential",
    },
    ("levothyroxine", "calcium"): {
        "severity": "MINOR",
        "mechanism": "Reduced absorption",
        "description": "Calcium binds levothyroxine in the gut",
        "clinical_significance": "Reduced thyroid hormone effect; separate doses by 4 hours",
    },
    ("warfarin", "acetaminophen"): {
        "severity": "MINOR",
        "mechanism": "Enhanced anticoagulant effect",
        "description": "Regular acetaminophen use can modestly raise INR",
        "clinical_significance": "Monitor INR with sustained use above 2 g/day",
    },
}


# ============================================================================
# CLASS-LEVEL INTERACTION RULES
# ============================================================================

CLASS_INTERACTION_RULES = {
    ("anticoagulant", "nsaid"): {
        "severity": "MAJOR",
        "mechanism": "Additive bleeding risk",
        "description": "NSAIDs impair platelet function and injure gastric mucosa in anticoagulated patients",
        "clinical_significance": "Risk of major gastrointestinal bleeding",
    },
    ("anticoagulant", "antiplatelet"): {
        "severity": "MAJOR",
        "mechanism": "Additive bleeding risk",
        "description": "Combined anticoagulant and antiplatelet therapy increases bleeding",
        "clinical_significance": "Risk of major bleeding",
    },
    ("ssri", "opioid"): {
        "severity": "MODERATE",
        "mechanism": "Serotonergic effects",
        "description": "Both drugs increase serotonin activity",
        "clinical_significance": "Risk of serotonin syndrome",
    },
    ("ssri", "anticoagulant"): {
        "severity": "MODERATE",
        "mechanism": "Impaired platelet serotonin uptake, bleeding",
        "description": "SSRIs deplete platelet serotonin and add to anticoagulant bleeding risk",
        "clinical_significance": "Increased bleeding risk",
    },
    ("ssri", "nsaid"): {
        "severity": "MODERATE",
        "mechanism": "Additive bleeding risk",
        "description": "SSRIs and NSAIDs together increase upper GI bleeding",
        "clinical_significance": "Increased gastrointestinal bleeding risk",
    },
    ("statin", "macrolide"): {
        "severity": "MODERATE",
        "mechanism": "CYP3A4 inhibition",
        "description": "Macrolides inhibit statin metabolism",
        "clinical_significance": "Increased risk of myopathy and rhabdomyolysis",
    },
    ("ace_inhibitor", "potassium_sparing_diuretic"): {
        "severity": "MODERATE",
        "mechanism": "Additive potassium retention",
        "description": "Both agents raise serum potassium",
        "clinical_significance": "Risk of hyperkalemia",
    },
    ("ace_inhibitor", "nsaid"): {
        "severity": "MODERATE",
        "mechanism": "Reduced renal prostaglandins",
        "description": "NSAIDs blunt the antihypertensive effect of ACE inhibitors and impair renal perfusion",
        "clinical_significance": "Reduced blood pressure control and acute kidney injury risk",
    },
}


# ============================================================================
# ALLERGIES
# ============================================================================

# Allergy keyword -> drug class the allergy names directly
ALLERGY_CLASSES = {
    "penicillin": "penicillin",
    "cephalosporin": "cephalosporin",
    "sulfa": "sulfonamide",
    "sulfonamide": "sulfonamide",
    "nsaid": "nsaid",
    "statin": "statin",
    "opioid": "opioid",
    "macrolide": "macrolide",
    "quinolone": "fluoroquinolone",
}

# Allergy keyword -> (cross-reacting class, note)
ALLERGY_CROSS_REACTIVITY = {
    "penicillin": ("cephalosporin", "potential cross-reactivity"),
    "aspirin": ("nsaid", "cross-reactivity with NSAIDs"),
}


# ============================================================================
# DRUG-DISEASE CAUTIONS & BEERS CRITERIA
# ============================================================================

DRUG_DISEASE_CAUTIONS = (
    {
        "class": "nsaid",
        "conditions": ("heart failure",),
        "score": 0.6,
        "message": "NSAIDs can cause fluid retention and worsen heart failure",
    },
    {
        "class": "nsaid",
        "conditions": ("peptic ulcer", "gi bleed", "gastrointestinal bleed"),
        "score": 0.7,
        "message": "NSAID use with history of peptic ulcer or GI bleeding",
    },
    {
        "class": "beta_blocker",
        "conditions": ("asthma", "copd"),
        "score": 0.5,
        "message": "Beta blockers may provoke bronchospasm",
    },
    {
        "class": "biguanide",
        "conditions": ("kidney", "renal"),
        "score": 0.6,
        "message": "Metformin accumulates in renal impairment (lactic acidosis risk)",
    },
    {
        "class": "fluoroquinolone",
        "conditions": ("myasthenia",),
        "score": 0.7,
        "message": "Fluoroquinolones can exacerbate myasthenia gravis",
    },
    {
        "class": "statin",
        "conditions": ("liver", "hepatic"),
        "score": 0.5,
        "message": "Statins require caution in active liver disease",
    },
    {
        "class": "opioid",
        "conditions": ("sleep apnea", "copd"),
        "score": 0.5,
        "message": "Opioids increase respiratory depression risk",
    },
    {
        "class": "ssri",
        "conditions": ("hyponatremia",),
        "score": 0.4,
        "message": "SSRIs can worsen hyponatremia",
    },
)

BEERS_CRITERIA = {
    "nsaid": "Avoid chronic NSAID use in older adults (GI bleeding, kidney injury)",
    "benzodiazepine": "Benzodiazepines increase falls and cognitive impairment in older adults",
    "antihistamine": "First-generation antihistamines are strongly anticholinergic in older adults",
    "hypnotic": "Z-drug hypnotics increase falls and fractures in older adults",
    "sulfonylurea": "Sulfonylureas carry prolonged hypoglycemia risk in older adults",
    "digoxin": "Avoid digoxin doses above 0.125 mg/day in older adults",
    "tramadol": "Tramadol may cause hyponatremia in older adults",
}


# ============================================================================
# LOOKUPS
# ============================================================================

def resolve_alias(name: str) -> Optional[str]:
    """Generic name for a brand alias, or None."""
    return BRAND_ALIASES.get(name.strip().lower())


def is_known_generic(name: str) -> bool:
    key = name.strip().lower()
    return key in DRUG_CLASSES or key in BRAND_ALIASES.values()


def drug_classes(name: str) -> set[str]:
    """
    Classes for a drug name.

    Multi-word names ("warfarin sodium") are matched per token, and names
    missing from the table fall back to common stem affixes.
    """
    key = name.strip().lower()
    key = BRAND_ALIASES.get(key, key)
    if key in DRUG_CLASSES:
        return set(DRUG_CLASSES[key])

    classes: set[str] = set()
    for token in key.replace("/", " ").replace("-", " ").split():
        token = BRAND_ALIASES.get(token, token)
        if token in DRUG_CLASSES:
            classes |= DRUG_CLASSES[token]
            continue
        for kind, affix, drug_class in CLASS_AFFIXES:
            if kind == "prefix" and token.startswith(affix):
                classes.add(drug_class)
            elif kind == "suffix" and token.endswith(affix):
                classes.add(drug_class)
    return classes


def _contains_any(name: str, candidates) -> bool:
    lower = name.lower()
    return any(candidate in lower for candidate in candidates)


def is_nsaid(name: str) -> bool:
    return "nsaid" in drug_classes(name)


def is_anticoagulant(name: str) -> bool:
    return "anticoagulant" in drug_classes(name)


def is_immunosuppressant(name: str) -> bool:
    return "immunosuppressant" in drug_classes(name)


def is_narrow_therapeutic_index(name: str) -> bool:
    return _contains_any(name, NARROW_THERAPEUTIC_INDEX)


def known_interaction(name_a: str, name_b: str) -> Optional[dict[str, Any]]:
    """Known critical pair, looked up in both orderings."""
    a, b = name_a.strip().lower(), name_b.strip().lower()
    return KNOWN_INTERACTIONS.get((a, b)) or KNOWN_INTERACTIONS.get((b, a))


def class_interaction(name_a: str, name_b: str) -> Optional[dict[str, Any]]:
    """First class-level rule matching the two drugs' classes."""
    classes_a = drug_classes(name_a)
    classes_b = drug_classes(name_b)
    for (class_x, class_y), rule in CLASS_INTERACTION_RULES.items():
        if (class_x in classes_a and class_y in classes_b) or (
            class_y in classes_a and class_x in classes_b
        ):
            return rule
    return None
