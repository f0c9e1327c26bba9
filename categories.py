import re
from typing import Callable, Dict, Iterable, List, Tuple, TypeVar

T = TypeVar("T")

# --- Constants ---

# Emission order of the constant groups
CONSTANT_CATEGORIES = [
    "CALENDAR",
    "PLANETS",
    "FICTITIOUS_PLANETS",
    "OFFSETS",
    "HOUSE_POINTS",
    "CALC_FLAGS",
    "SIDEREAL_BITS",
    "AYANAMSA",
    "NODE_APSIDES",
    "ECLIPSE",
    "RISE_TRANSIT",
    "COORDINATE_TRANSFORM",
    "REFRACTION",
    "HELIACAL",
    "OPTIC",
    "SPLIT_DEG",
    "TIDAL",
    "DELTAT",
    "MODELS",
    "MODEL_VALUES",
    "UNITS",
    "FIXSTAR",
    "OTHER",
]


def _prefix(*prefixes: str) -> Callable[[str], bool]:
    return lambda name: name.startswith(prefixes)

def _exact(*names: str) -> Callable[[str], bool]:
    members = set(names)
    return lambda name: name in members

def _pattern(regex: str) -> Callable[[str], bool]:
    compiled = re.compile(regex)
    return lambda name: compiled.search(name) is not None


# First match wins; the order matters where prefixes overlap (SE_SIDM_ before SE_SID*)
CONSTANT_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (_prefix("SE_SIDM_"), "AYANAMSA"),
    (_prefix("SEFLG_"), "CALC_FLAGS"),
    (lambda n: n.startswith("SE_SIDBIT_") or n == "SE_SIDBITS", "SIDEREAL_BITS"),
    (_prefix("SE_ECL_"), "ECLIPSE"),
    (_prefix("SE_CALC_", "SE_BIT_"), "RISE_TRANSIT"),
    (_prefix("SE_HELFLAG_", "SE_HELIACAL", "SE_MORNING_", "SE_EVENING_",
             "SE_ACRONYCHAL", "SE_COSMICAL"), "HELIACAL"),
    (_prefix("SE_NODBIT_"), "NODE_APSIDES"),
    (_prefix("SE_SPLIT_DEG_"), "SPLIT_DEG"),
    (_prefix("SE_TIDAL_"), "TIDAL"),
    (_prefix("SE_MODEL_", "NSE_MODEL"), "MODELS"),
    (_prefix("SEMOD_"), "MODEL_VALUES"),
    (_prefix("SE_AUNIT_"), "UNITS"),
    (_pattern(r"^SE_(SUN|MOON|MERCURY|VENUS|MARS|JUPITER|SATURN|URANUS|NEPTUNE|PLUTO"
              r"|MEAN_NODE|TRUE_NODE|MEAN_APOG|OSCU_APOG|EARTH|CHIRON|PHOLUS|CERES"
              r"|PALLAS|JUNO|VESTA|INTP_|NPLANETS|ECL_NUT)$"), "PLANETS"),
    (_pattern(r"^SE_(CUPIDO|HADES|ZEUS|KRONOS|APOLLON|ADMETOS|VULKANUS|POSEIDON|ISIS"
              r"|NIBIRU|HARRINGTON|NEPTUNE_LEVERRIER|NEPTUNE_ADAMS|PLUTO_LOWELL"
              r"|PLUTO_PICKERING|VULCAN|WHITE_MOON|PROSERPINA|WALDEMATH)$"), "FICTITIOUS_PLANETS"),
    (_pattern(r"^SE_(ASC|MC|ARMC|VERTEX|EQUASC|COASC1|COASC2|POLASC|NASCMC)$"), "HOUSE_POINTS"),
    (_exact("SE_JUL_CAL", "SE_GREG_CAL"), "CALENDAR"),
    (_exact("SE_FICT_OFFSET", "SE_FICT_OFFSET_1", "SE_FICT_MAX", "SE_AST_OFFSET",
            "SE_PLMOON_OFFSET", "SE_COMET_OFFSET", "SE_NALL_NAT_POINTS", "SE_NFICT_ELEM",
            "SE_VARUNA"), "OFFSETS"),
    (_exact("SE_TRUE_TO_APP", "SE_APP_TO_TRUE"), "REFRACTION"),
    (_exact("SE_ECL2HOR", "SE_EQU2HOR", "SE_HOR2ECL", "SE_HOR2EQU"), "COORDINATE_TRANSFORM"),
    (_exact("SE_PHOTOPIC_FLAG", "SE_SCOTOPIC_FLAG", "SE_MIXEDOPIC_FLAG"), "OPTIC"),
    (_exact("SE_FIXSTAR", "SE_MAX_STNAME"), "FIXSTAR"),
    (_exact("SE_DELTAT_AUTOMATIC"), "DELTAT"),
]


# --- Routines ---

# Emission order of the routine groups
FUNCTION_CATEGORIES = [
    "CORE_CALCULATIONS",
    "FIXED_STARS",
    "DATE_TIME",
    "HOUSES",
    "ECLIPSES",
    "RISE_TRANSIT",
    "HELIACAL",
    "COORDINATE_TRANSFORMS",
    "DELTA_T",
    "SIDEREAL",
    "UTILITY",
    "OTHER",
]

FUNCTION_CATEGORY_TITLES = {
    "CORE_CALCULATIONS": "Core Calculations",
    "FIXED_STARS": "Fixed Stars",
    "DATE_TIME": "Date/Time",
    "HOUSES": "Houses",
    "ECLIPSES": "Eclipses",
    "RISE_TRANSIT": "Rise/Transit",
    "HELIACAL": "Heliacal",
    "COORDINATE_TRANSFORMS": "Coordinate Transforms",
    "DELTA_T": "Delta T",
    "SIDEREAL": "Sidereal",
    "UTILITY": "Utility",
    "OTHER": "Other",
}

# Substring matches, first hit wins
FUNCTION_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (_pattern(r"fixstar"), "FIXED_STARS"),
    (_pattern(r"calc|calc_ut|calc_pctr|solcross|mooncross|helio_cross|pheno|nod_aps|orbital"),
     "CORE_CALCULATIONS"),
    (_pattern(r"julday|revjul|utc|jdet|jdut|date_conversion"), "DATE_TIME"),
    (_pattern(r"house"), "HOUSES"),
    (_pattern(r"eclipse|occult"), "ECLIPSES"),
    (_pattern(r"rise_trans|azalt"), "RISE_TRANSIT"),
    (_pattern(r"heliacal|vis_limit"), "HELIACAL"),
    (_pattern(r"cotrans|refrac"), "COORDINATE_TRANSFORMS"),
    (_pattern(r"deltat|time_equ|lmt_to_lat|lat_to_lmt"), "DELTA_T"),
    (_pattern(r"sid|ayanamsa"), "SIDEREAL"),
    (_pattern(r"degnorm|radnorm|split_deg|day_of_week|d2l|csnorm|difcs|difdeg|difrad|csround|midp"),
     "UTILITY"),
]


def _classify(name: str, rules: List[Tuple[Callable[[str], bool], str]]) -> str:
    for predicate, category in rules:
        if predicate(name):
            return category
    return "OTHER"


def categorize_constant(name: str) -> str:
    return _classify(name, CONSTANT_RULES)


def categorize_function(name: str) -> str:
    return _classify(name, FUNCTION_RULES)


def category_heading(category: str) -> str:
    """CALC_FLAGS -> 'CALC FLAGS'"""
    return category.replace("_", " ")


def group_by_category(items: Iterable[T], key: Callable[[T], str], order: List[str]) -> Dict[str, List[T]]:
    """Buckets items by category, in `order`, keeping input order within a bucket; empty buckets are dropped."""
    groups: Dict[str, List[T]] = {category: [] for category in order}
    for item in items:
        groups[key(item)].append(item)
    return {category: members for category, members in groups.items() if members}
