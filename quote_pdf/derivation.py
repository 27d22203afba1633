"""Quote normalization and derivation of document fields and section flags."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from html import escape
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import DEFAULTS, DerivationDefaults
from .formatting import (
    fixed,
    first_present,
    fmt_date,
    fmt_number,
    parse_date,
    round_half_up,
    safe_float,
    safe_int,
)
from .formatting import today as current_date

DerivedFields = Dict[str, str]
SectionFlags = Dict[str, bool]

FIELD_KEYS = (
    "NOM_COMPLET",
    "PRENOM",
    "NOM",
    "EMAIL",
    "TELEPHONE",
    "PRODUIT_NOM",
    "PRODUIT_IMAGE",
    "PRIX",
    "PRIX_ORIGINAL",
    "REMISE_PCT",
    "FORME",
    "SURFACE",
    "SURFACE_NETTE",
    "SURFACE_COMMANDER",
    "TOTAL",
    "TYPE_SOL",
    "SOL_LABEL",
    "ANIMAUX_OUI_NON",
    "NB_JONCTIONS",
    "CHUTES_PCT",
    "ORIENT_H_CLASS",
    "ORIENT_V_CLASS",
    "SVG_CALEPINAGE",
    "ROULEAUX_ROWS",
    "ORDRE_POSE",
    "TOTAL_M2",
    "GEO_QTY",
    "JONC_QTY",
    "CLOUS_QTY",
    "NETTOYANT_QTY",
    "DATE",
    "ANNEE",
)

SECTION_NAMES = (
    "EMAIL",
    "TELEPHONE",
    "ANIMAUX",
    "SOL_MEUBLE",
    "SOL_DUR",
    "HAS_REMISE",
    "PRODUIT_IMAGE",
    "NO_PRODUIT_IMAGE",
    "JONCTIONS",
    "SVG",
)

SOFT_GROUND_LABEL = "Sol meuble (terre, sable)"
HARD_GROUND_LABEL = "Sol dur (béton, dalle)"
ORDER_ARROW = '<span class="ordre-arrow">›</span>'


@dataclass(frozen=True)
class Strip:
    reference: str
    width: float
    length: float
    quantity: int

    @property
    def area(self) -> float:
        return self.width * self.length * self.quantity


@dataclass(frozen=True)
class QuoteFigures:
    """Normalized quote values, before display formatting."""

    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: str

    product_name: str
    product_image: str
    unit_price: float
    original_unit_price: float
    has_discount: bool
    discount_percent: int

    shape: str
    net_area: float
    gross_area: float
    total_price: float

    strips: Tuple[Strip, ...]
    strips_total_m2: float
    area_to_order: float
    orientation: str
    waste_percent: float
    junction_count: int
    diagram_markup: str

    soil_type: str
    is_soft_ground: bool
    has_pets: bool

    geotextile_m2: int
    geotextile_rolls: int
    tape_ml: int
    cleaner_bottles: int
    nail_boxes: int

    quote_date: date


def _text(value: Any) -> str:
    if value is None or value is False:
        return ""
    return str(value).strip()


def _record(data: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    value = first_present(data, *keys)
    return value if isinstance(value, Mapping) else {}


def _is_affirmative(value: Any, answers) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().casefold() in answers
    return False


def _ceil(value: float) -> int:
    return math.ceil(value) if math.isfinite(value) else 0


def parse_strips(layout: Mapping[str, Any], defaults: DerivationDefaults = DEFAULTS) -> Tuple[Strip, ...]:
    raw = first_present(layout, "les", "rouleaux", "strips")
    if not isinstance(raw, (list, tuple)):
        return ()

    strips: List[Strip] = []
    for position, entry in enumerate(raw, start=1):
        if not isinstance(entry, Mapping):
            entry = {}
        reference = _text(first_present(entry, "ref", "reference_label")) or f"L{position}"
        strips.append(
            Strip(
                reference=reference,
                width=safe_float(first_present(entry, "largeur", "width"), defaults.strip_width),
                length=safe_float(first_present(entry, "longueur", "length"), defaults.strip_length),
                quantity=safe_int(first_present(entry, "quantite", "quantity"), defaults.strip_quantity),
            )
        )
    return tuple(strips)


def compute_figures(
    quote: Any,
    defaults: DerivationDefaults = DEFAULTS,
    today: Optional[date] = None,
) -> QuoteFigures:
    data: Mapping[str, Any] = quote if isinstance(quote, Mapping) else {}
    client = _record(data, "client")
    product = _record(data, "produit", "product")
    terrain = _record(data, "terrain")
    layout = _record(data, "calepinage", "layout")
    questionnaire = _record(data, "questionnaire")

    first_name = _text(first_present(client, "prenom", "first_name"))
    last_name = _text(first_present(client, "nom", "last_name"))
    full_name = f"{first_name} {last_name}".strip() or defaults.client_name

    unit_price = safe_float(first_present(product, "prix", "prix_m2", "unit_price"))
    original_unit_price = safe_float(
        first_present(product, "prix_original", "prix_barre", "original_unit_price")
    )
    has_discount = (
        original_unit_price > unit_price
        and (original_unit_price - unit_price) > defaults.discount_threshold
    )
    discount_percent = 0
    if has_discount and original_unit_price > 0:
        discount_percent = round_half_up(
            (original_unit_price - unit_price) / original_unit_price * 100
        )

    net_area = safe_float(first_present(terrain, "surface_nette", "surface", "net_area"))
    gross_area = safe_float(first_present(terrain, "surface_brute", "gross_area"), net_area)

    strips = parse_strips(layout, defaults)
    strips_total_m2 = sum(strip.area for strip in strips)
    area_to_order = strips_total_m2 if strips_total_m2 != 0 else gross_area

    junction_fallback = max(0, len(strips) - 1)
    junction_count = max(
        0,
        safe_int(first_present(layout, "nb_jonctions", "jonctions", "junction_count"), junction_fallback),
    )

    soil_type = _text(first_present(questionnaire, "type_sol", "sol", "soil_type")) or defaults.soil_type
    folded_soil = soil_type.casefold()
    is_soft_ground = any(keyword in folded_soil for keyword in defaults.soft_ground_keywords)

    has_pets = _is_affirmative(
        first_present(questionnaire, "has_animaux", "has_pets"), defaults.affirmative_answers
    ) or _is_affirmative(first_present(questionnaire, "animaux", "pets"), defaults.affirmative_answers)

    geotextile_m2 = _ceil(gross_area * defaults.geotextile_waste_factor)

    return QuoteFigures(
        first_name=first_name,
        last_name=last_name,
        full_name=full_name,
        email=_text(client.get("email")),
        phone=_text(first_present(client, "telephone", "tel", "phone")),
        product_name=_text(first_present(product, "nom", "name")) or defaults.product_name,
        product_image=_text(first_present(product, "image", "image_url")),
        unit_price=unit_price,
        original_unit_price=original_unit_price,
        has_discount=has_discount,
        discount_percent=discount_percent,
        shape=_text(first_present(terrain, "forme", "shape")) or defaults.shape,
        net_area=net_area,
        gross_area=gross_area,
        total_price=gross_area * unit_price,
        strips=strips,
        strips_total_m2=strips_total_m2,
        area_to_order=area_to_order,
        orientation=_text(layout.get("orientation")).lower() or defaults.orientation,
        waste_percent=safe_float(first_present(layout, "chutes_percent", "perte_percent", "waste_percent")),
        junction_count=junction_count,
        diagram_markup=_text(first_present(layout, "svg", "diagram_markup")),
        soil_type=soil_type,
        is_soft_ground=is_soft_ground,
        has_pets=has_pets,
        geotextile_m2=geotextile_m2,
        geotextile_rolls=_ceil(geotextile_m2 / defaults.geotextile_roll_m2),
        tape_ml=junction_count * defaults.tape_ml_per_junction,
        cleaner_bottles=max(1, _ceil(gross_area / defaults.cleaner_coverage_m2)),
        nail_boxes=defaults.nail_boxes,
        quote_date=parse_date(data.get("date")) or today or current_date(),
    )


def strip_rows_html(strips: Tuple[Strip, ...]) -> str:
    rows = []
    for strip in strips:
        rows.append(
            "<tr>\n"
            f'            <td><span class="le-badge">{escape(strip.reference)}</span></td>\n'
            f"            <td>{strip.quantity}x {fixed(strip.width)}m × {fixed(strip.length, 2)}m</td>\n"
            f'            <td style="text-align:right;">{fixed(strip.area)} m²</td>\n'
            "        </tr>"
        )
    return "".join(rows)


def lay_order_html(strips: Tuple[Strip, ...]) -> str:
    items = []
    for index, strip in enumerate(strips, start=1):
        items.append(
            f'<span class="ordre-item"><span class="le-badge">{index}</span> {escape(strip.reference)} '
            f'<span class="dim">{fixed(strip.width)}m × {fixed(strip.length, 1)}m</span></span> '
        )
    return ORDER_ARROW.join(items)


def build_fields(figures: QuoteFigures) -> DerivedFields:
    horizontal = figures.orientation == "horizontal"
    vertical = figures.orientation == "vertical"
    return {
        "NOM_COMPLET": escape(figures.full_name),
        "PRENOM": escape(figures.first_name),
        "NOM": escape(figures.last_name),
        "EMAIL": escape(figures.email),
        "TELEPHONE": escape(figures.phone),
        "PRODUIT_NOM": escape(figures.product_name),
        "PRODUIT_IMAGE": escape(figures.product_image),
        "PRIX": fmt_number(figures.unit_price),
        "PRIX_ORIGINAL": fmt_number(figures.original_unit_price),
        "REMISE_PCT": str(figures.discount_percent),
        "FORME": escape(figures.shape),
        "SURFACE": fmt_number(figures.gross_area),
        "SURFACE_NETTE": fmt_number(figures.net_area),
        "SURFACE_COMMANDER": fmt_number(figures.area_to_order),
        "TOTAL": fmt_number(figures.total_price),
        "TYPE_SOL": escape(figures.soil_type),
        "SOL_LABEL": SOFT_GROUND_LABEL if figures.is_soft_ground else HARD_GROUND_LABEL,
        "ANIMAUX_OUI_NON": "oui" if figures.has_pets else "non",
        "NB_JONCTIONS": str(figures.junction_count),
        "CHUTES_PCT": fmt_number(figures.waste_percent, 1),
        "ORIENT_H_CLASS": "orient-active" if horizontal else "orient-inactive",
        "ORIENT_V_CLASS": "orient-active" if vertical else "orient-inactive",
        "SVG_CALEPINAGE": figures.diagram_markup,
        "ROULEAUX_ROWS": strip_rows_html(figures.strips),
        "ORDRE_POSE": lay_order_html(figures.strips),
        "TOTAL_M2": fmt_number(figures.strips_total_m2),
        "GEO_QTY": f"{figures.geotextile_m2} m² ({figures.geotextile_rolls} rouleaux)",
        "JONC_QTY": f"{figures.tape_ml} ml ({figures.junction_count} unités)",
        "CLOUS_QTY": f"{figures.nail_boxes} boîte(s)",
        "NETTOYANT_QTY": f"{figures.cleaner_bottles} bouteille(s)",
        "DATE": fmt_date(figures.quote_date),
        "ANNEE": str(figures.quote_date.year),
    }


def build_flags(figures: QuoteFigures) -> SectionFlags:
    return {
        "EMAIL": bool(figures.email),
        "TELEPHONE": bool(figures.phone),
        "ANIMAUX": figures.has_pets,
        "SOL_MEUBLE": figures.is_soft_ground,
        "SOL_DUR": not figures.is_soft_ground,
        "HAS_REMISE": figures.has_discount,
        "PRODUIT_IMAGE": bool(figures.product_image),
        "NO_PRODUIT_IMAGE": not figures.product_image,
        "JONCTIONS": figures.junction_count > 0,
        "SVG": bool(figures.diagram_markup),
    }


def derive(
    quote: Any,
    defaults: DerivationDefaults = DEFAULTS,
    today: Optional[date] = None,
) -> Tuple[DerivedFields, SectionFlags]:
    """Turn a raw quote payload into template fields and section flags.

    Never raises: missing or malformed values fall back to ``defaults``.
    """
    figures = compute_figures(quote, defaults, today)
    return build_fields(figures), build_flags(figures)
