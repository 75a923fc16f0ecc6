"""
Equipment Normalizer
Maps raw EXIF make/model strings to a canonical brand and a stable key, so
"Canon Inc." / "CANON" and "NIKON CORPORATION" / "Nikon" collapse onto one
Camera or Lens row.
"""

import re
from dataclasses import dataclass
from typing import Optional

# Lower-cased raw make (or its first word) -> canonical brand
BRAND_ALIASES = {
    "canon": "Canon",
    "canon inc.": "Canon",
    "nikon": "Nikon",
    "nikon corporation": "Nikon",
    "sony": "Sony",
    "sony corporation": "Sony",
    "fujifilm": "Fujifilm",
    "fuji": "Fujifilm",
    "fuji photo film co., ltd.": "Fujifilm",
    "olympus": "Olympus",
    "olympus corporation": "Olympus",
    "olympus imaging corp.": "Olympus",
    "om digital solutions": "OM System",
    "panasonic": "Panasonic",
    "leica": "Leica",
    "leica camera ag": "Leica",
    "pentax": "Pentax",
    "ricoh": "Ricoh",
    "ricoh imaging company, ltd.": "Ricoh",
    "hasselblad": "Hasselblad",
    "sigma": "Sigma",
    "tamron": "Tamron",
    "samyang": "Samyang",
    "zeiss": "Zeiss",
    "apple": "Apple",
    "samsung": "Samsung",
    "google": "Google",
    "xiaomi": "Xiaomi",
    "huawei": "Huawei",
    "dji": "DJI",
    "gopro": "GoPro",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True)
class EquipmentName:
    key: str
    name: str
    brand: Optional[str]


def equipment_key(name: str) -> str:
    """Case-folded identifier with every run of non-alphanumerics collapsed to '-'."""
    return _NON_ALNUM.sub("-", name.casefold()).strip("-")


def _clean(value: Optional[str]) -> str:
    return _SPACES.sub(" ", (value or "").replace("\x00", "")).strip()


def normalize_brand(make: Optional[str]) -> Optional[str]:
    make = _clean(make)
    if not make:
        return None
    lowered = make.lower()
    if lowered in BRAND_ALIASES:
        return BRAND_ALIASES[lowered]
    first_word = lowered.split(" ")[0].rstrip(",.")
    if first_word in BRAND_ALIASES:
        return BRAND_ALIASES[first_word]
    return make.title() if make.isupper() else make


def _strip_brand(model: str, raw_make: str, brand: Optional[str]) -> str:
    lowered = model.lower()
    for prefix in filter(None, {raw_make.lower(), (brand or "").lower(), raw_make.lower().split(" ")[0]}):
        if lowered.startswith(prefix + " "):
            return model[len(prefix):].strip()
    return model


def normalize_camera(make: Optional[str], model: Optional[str]) -> Optional[EquipmentName]:
    make_clean = _clean(make)
    model_clean = _clean(model)
    if not model_clean and not make_clean:
        return None

    brand = normalize_brand(make_clean)
    model_part = _strip_brand(model_clean, make_clean, brand) if model_clean else ""
    name = " ".join(p for p in (brand, model_part) if p)
    key = equipment_key(name)
    if not key:
        return None
    return EquipmentName(key=key, name=name, brand=brand)


def normalize_lens(lens_model: Optional[str], make: Optional[str] = None) -> Optional[EquipmentName]:
    lens_clean = _clean(lens_model)
    if not lens_clean:
        return None

    brand = None
    first_word = lens_clean.lower().split(" ")[0]
    if first_word in BRAND_ALIASES:
        brand = BRAND_ALIASES[first_word]
        lens_clean = f"{brand} {lens_clean[len(first_word):].strip()}".strip()
    elif make:
        brand = normalize_brand(make)

    key = equipment_key(lens_clean)
    if not key:
        return None
    return EquipmentName(key=key, name=lens_clean, brand=brand)
