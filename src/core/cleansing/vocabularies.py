"""
Built-in controlled vocabularies (canonical value -> accepted synonyms).

Pipeline YAML files may override or extend these under ``vocabularies:``.
"""

EQUIPMENT = {
    "BAHMAN": ["BAHMANN", "BAMAN", "BAHMAM", "BAHMAN MIXER"],
    "SILOKING": ["SILO KING", "SILO-KING", "SILOK ING", "SILOKIN"],
}

SHIFT = {
    "MANHA": ["MANHÃ", "MANHA", "MORNING", "M"],
    "TARDE": ["AFTERNOON", "T"],
    "NOITE": ["NIGHT", "N"],
    "MADRUGADA": ["DAWN", "EARLY MORNING"],
}

TREATMENT_TYPE = {
    "RACAO": ["RAÇÃO", "RACAO", "RATION", "FEED"],
    "VOLUMOSO": ["FORAGE", "ROUGHAGE"],
    "MINERAL": ["SAL MINERAL", "MINERALS"],
    "MEDICAMENTO": ["MEDICINE", "MEDICACAO", "MEDICAÇÃO"],
}

DEFAULT_VOCABULARIES = {
    "equipment": EQUIPMENT,
    "shift": SHIFT,
    "treatment_type": TREATMENT_TYPE,
}
