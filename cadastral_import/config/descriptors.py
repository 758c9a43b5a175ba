from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date
from functools import partial
from typing import Any

from ..excel.coercion import or_default, to_bool, to_date, to_decimal, to_int, to_num, to_str
from ..models.config_models import (
    DEFAULT_CURRENCY,
    DEFAULT_REQUIRED_SHEETS,
    DEFAULT_SERIAL_EPOCH,
    PROPERTY_TYPES,
)
from ..models.descriptor import Coercer, ForeignKey, RowContext, SheetDescriptor

"""Sheet import descriptor set.

One descriptor per worksheet, declared in import order: independent
tables first, then the administrative hierarchy (Region -> Departement ->
Arrondissement -> Lotissement -> Parcelle -> Batiment), the generic
Property table, Media and finally the relation tables. Any descriptor
referencing an entity through a foreign key must come after the
descriptor producing that entity; ``validate_dependency_order`` checks this
whenever a set is built.

Column layouts are positional. Each layout is a sequence of
``(field, coercer)`` pairs, so the record a transform starts from is simply
``dict(zip(fields, coerced_values))``.
"""

__all__ = [
    "DescriptorOrderError",
    "PROPERTY_CATEGORIES",
    "LISTING_TYPES",
    "LISTING_STATUS",
    "MEDIA_ENTITY_TYPES",
    "build_descriptors",
    "validate_dependency_order",
    "import_plan",
    "get_descriptor",
    "is_valid_id",
    "DEFAULT_DESCRIPTORS",
]

logger = logging.getLogger(__name__)

PROPERTY_CATEGORIES = ("LAND", "RESIDENTIAL", "COMMERCIAL", "INDUSTRIAL", "MIXED")
LISTING_TYPES = ("SALE", "RENT", "BOTH")
LISTING_STATUS = ("DRAFT", "PUBLISHED", "SOLD", "RENTED", "ARCHIVED")
MEDIA_ENTITY_TYPES = ("LOTISSEMENT", "PARCELLE", "BATIMENT", "INFRASTRUCTURE")

# entityType -> (media 側 FK 列, 参照先 entity, 参照先列)
_MEDIA_TARGETS: dict[str, tuple[str, str, str]] = {
    "LOTISSEMENT": ("lotissementId", "lotissement", "Id_Lotis"),
    "PARCELLE": ("parcelleId", "parcelle", "Id_Parcel"),
    "BATIMENT": ("batimentId", "batiment", "Id_Bat"),
    "INFRASTRUCTURE": ("infrastructureId", "infrastructure", "Id_Infras"),
}

Layout = Sequence[tuple[str, Coercer]]


class DescriptorOrderError(ValueError):
    """A descriptor references an entity not produced by an earlier one."""


def is_valid_id(value: Any) -> bool:
    """Non-null, numeric and non-zero."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return value != 0 and value == value


def _id_or_none(value: Any) -> Any:
    return value if is_valid_id(value) else None


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

def _identified(
    row: Sequence[Any],
    ctx: RowContext,
    *,
    fields: tuple[str, ...],
    id_field: str,
    optional_refs: tuple[str, ...] = (),
) -> dict[str, Any] | None:
    """Record keyed by a numeric identifier.

    Optional reference columns holding zero or garbage are nulled rather
    than rejected.
    """
    record = dict(zip(fields, row))
    if not is_valid_id(record.get(id_field)):
        ctx.warn(f"Row {ctx.row_number}: Missing or invalid {id_field}")
        return None
    for ref in optional_refs:
        record[ref] = _id_or_none(record.get(ref))
    return record


def _apply_listing_defaults(
    record: dict[str, Any],
    *,
    default_category: str,
    currency: str,
    flags: tuple[str, ...],
) -> dict[str, Any]:
    if record.get("category") not in PROPERTY_CATEGORIES:
        record["category"] = default_category
    if record.get("listingType") not in LISTING_TYPES:
        record["listingType"] = None
    if record.get("listingStatus") not in LISTING_STATUS:
        record["listingStatus"] = "DRAFT"
    record["currency"] = or_default(record.get("currency"), currency)
    for flag in flags:
        record[flag] = or_default(record.get(flag), False)
    return record


def _listing(
    row: Sequence[Any],
    ctx: RowContext,
    *,
    fields: tuple[str, ...],
    id_field: str,
    optional_refs: tuple[str, ...],
    default_category: str,
    currency: str,
    flags: tuple[str, ...],
    property_types: tuple[str, ...] | None = None,
) -> dict[str, Any] | None:
    """Cadastral record carrying listing columns (Lotissement/Parcelle/Batiment)."""
    record = _identified(row, ctx, fields=fields, id_field=id_field, optional_refs=optional_refs)
    if record is None:
        return None
    if property_types is not None and record.get("propertyType") not in property_types:
        # Batiment: 不正値は NULL (行は残す)
        record["propertyType"] = None
    return _apply_listing_defaults(
        record, default_category=default_category, currency=currency, flags=flags
    )


def _property(
    row: Sequence[Any],
    ctx: RowContext,
    *,
    fields: tuple[str, ...],
    property_types: tuple[str, ...],
    currency: str,
) -> dict[str, Any] | None:
    """Generic property row.

    Requires a parcel reference; a provided ``propertyType`` outside the
    configured set rejects the row instead of storing a bad value.
    """
    record = _identified(row, ctx, fields=fields, id_field="Id_Prop")
    if record is None:
        return None
    if not is_valid_id(record.get("Id_Parcel")):
        ctx.warn(f"Row {ctx.row_number}: Missing required FK: Id_Parcel")
        return None
    raw_type = record.get("propertyType")
    if raw_type is not None:
        normalized = raw_type.strip().upper()
        if normalized not in property_types:
            message = f"Row {ctx.row_number}: Invalid propertyType \"{raw_type}\""
            logger.warning(f"{ctx.sheet_name}: {message}")
            ctx.warn(message)
            return None
        record["propertyType"] = normalized
    return _apply_listing_defaults(
        record, default_category="RESIDENTIAL", currency=currency, flags=("featured",)
    )


def _media(row: Sequence[Any], ctx: RowContext, *, fields: tuple[str, ...]) -> dict[str, Any] | None:
    """Media link keyed by its url (alternate identifier scheme)."""
    values = dict(zip(fields, row))
    entity_type = values.get("entityType")
    url = values.get("url")
    if not entity_type:
        ctx.warn(f"Row {ctx.row_number}: Missing entityType")
        return None
    if not url:
        ctx.warn(f"Row {ctx.row_number}: Missing URL")
        return None
    entity_type = entity_type.upper()
    if entity_type not in MEDIA_ENTITY_TYPES:
        ctx.warn(f"Row {ctx.row_number}: Invalid entityType \"{values.get('entityType')}\"")
        return None

    record: dict[str, Any] = {}
    if is_valid_id(values.get("id")):
        record["id"] = values["id"]
    record.update(
        entityType=entity_type,
        url=url,
        type=or_default(values.get("type"), "image"),
        order=or_default(values.get("order"), 0),
        caption=values.get("caption"),
        isPrimary=or_default(values.get("isPrimary"), False),
    )
    for column, _entity, _field in _MEDIA_TARGETS.values():
        record[column] = None
    entity_id = values.get("entityId")
    if is_valid_id(entity_id):
        record[_MEDIA_TARGETS[entity_type][0]] = entity_id
    else:
        ctx.warn(f"Row {ctx.row_number}: Media row missing valid entityId for type {entity_type}")
    return record


def _junction(
    row: Sequence[Any],
    ctx: RowContext,
    *,
    fields: tuple[str, ...],
    key_fields: tuple[str, ...],
) -> dict[str, Any] | None:
    record = dict(zip(fields, row))
    for key in key_fields:
        if not is_valid_id(record.get(key)):
            ctx.warn(f"Row {ctx.row_number}: Missing required FK: {key}")
            return None
    return record


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------

def _listing_layout(
    *, extra: Layout = (), trailing_flags: Layout = ()
) -> list[tuple[str, Coercer]]:
    return [
        ("slug", to_str),
        ("title", to_str),
        ("shortDescription", to_str),
        ("description", to_str),
        ("category", to_str),
        ("listingType", to_str),
        ("listingStatus", to_str),
        *extra,
        ("currency", to_str),
        ("featured", to_bool),
        *trailing_flags,
    ]


def _layouts(to_date_cfg: Coercer) -> dict[str, list[tuple[str, Coercer]]]:
    return {
        "Route": [
            ("Id_Rte", to_int), ("Cat_Rte", to_str), ("Type_Rte", to_str),
            ("Largeur_Rte", to_str), ("Etat_Rte", to_str), ("Mat_Rte", to_str),
            ("WKT_Geometry", to_str),
        ],
        "Riviere": [
            ("Id_Riv", to_int), ("Nom_Riv", to_str), ("Type_Riv", to_str),
            ("Etat_amenag", to_str), ("Debit_Riv", to_str), ("WKT_Geometry", to_str),
        ],
        "Equipement": [
            ("Id_Equip", to_int), ("Type_Equip", to_str), ("Design_Equip", to_str),
            ("Etat_Equip", to_str), ("Mat_Equip", to_str), ("WKT_Geometry", to_str),
        ],
        "Infrastructure": [
            ("Id_Infras", to_int), ("Nom_infras", to_str), ("Type_Infraas", to_str),
            ("Categorie_infras", to_str), ("Cycle", to_str), ("Statut_infras", to_str),
            ("Standing", to_str), ("WKT_Geometry", to_str),
        ],
        "Borne": [
            ("Id_Borne", to_int), ("coord_x", to_num), ("coord_y", to_num),
            ("coord_z", to_num), ("WKT_Geometry", to_str),
        ],
        "Taxe_immobiliere": [
            ("Id_Taxe", to_int), ("Num_TF", to_str), ("Nom_Proprio", to_str),
            ("NIU", to_str), ("Val_imm", to_num), ("Taxe_Payee", to_bool),
            ("Date_declaree", to_date_cfg), ("Type_taxe", to_str),
        ],
        "Reseau_energetique": [
            ("Id_Reseaux", to_int), ("Source_Res", to_num), ("Type_Reseau", to_str),
            ("Etat_Res", to_str), ("Materiau", to_str), ("WKT_Geometry", to_str),
        ],
        "Reseau_en_eau": [
            ("Id_Reseaux", to_int), ("Source_Res", to_num), ("Type_Res", to_str),
            ("Etat_Res", to_str), ("Mat_Res", to_str), ("WKT_Geometry", to_str),
        ],
        "Region": [
            ("Id_Reg", to_int), ("Nom_Reg", to_str), ("Sup_Reg", to_num),
            ("Chef_lieu_Reg", to_str), ("WKT_Geometry", to_str),
        ],
        "Departement": [
            ("Id_Dept", to_int), ("Nom_Dept", to_str), ("Sup_Dept", to_num),
            ("Chef_lieu_Dept", to_str), ("Id_Reg", to_int), ("WKT_Geometry", to_str),
        ],
        "Arrondissement": [
            ("Id_Arrond", to_int), ("Nom_Arrond", to_str), ("Sup_Arrond", to_num),
            ("Chef_lieu_Arrond", to_str), ("Commune", to_str), ("Id_Dept", to_int),
            ("WKT_Geometry", to_str),
        ],
        "Lotissement": [
            ("Id_Lotis", to_int), ("Nom_proprio", to_str), ("Num_TF", to_str),
            ("Statut", to_str), ("Nom_cons", to_str), ("Surface", to_num),
            ("Nom_visa_lotis", to_str), ("Date_approb", to_date_cfg), ("Geo_exe", to_str),
            ("Nbre_lots", to_int), ("Lieudit", to_str), ("Echelle", to_int),
            ("Ccp", to_str), ("Id_Arrond", to_int), ("WKT_Geometry", to_str),
            *_listing_layout(
                extra=[("price", to_decimal), ("pricePerSqM", to_decimal)],
                trailing_flags=[
                    ("totalParcels", to_int), ("availableParcels", to_int),
                    ("hasRoadAccess", to_bool), ("hasElectricity", to_bool),
                    ("hasWater", to_bool),
                ],
            ),
            ("createdById", to_str),
        ],
        "Parcelle": [
            ("Id_Parcel", to_int), ("Nom_Prop", to_str), ("TF_Mere", to_str),
            ("Mode_Obtent", to_str), ("TF_Cree", to_str), ("Nom_Cons", to_str),
            ("Sup", to_num), ("Nom_Visa_Cad", to_str), ("Date_visa", to_date_cfg),
            ("Geometre", to_str), ("Date_impl", to_date_cfg), ("Num_lot", to_str),
            ("Num_bloc", to_str), ("Lieu_dit", to_str), ("Largeur_Rte", to_str),
            ("Echelle", to_int), ("Ccp_N", to_str), ("Mise_Val", to_bool),
            ("Cloture", to_bool), ("Id_Lotis", to_int), ("WKT_Geometry", to_str),
            *_listing_layout(
                extra=[("price", to_decimal), ("pricePerSqM", to_decimal)],
                trailing_flags=[("isForDevelopment", to_bool)],
            ),
            ("createdById", to_str),
        ],
        "Batiment": [
            ("Id_Bat", to_int), ("Cat_Bat", to_str), ("Status", to_str),
            ("Standing", to_str), ("Cloture", to_bool), ("No_Permis", to_str),
            ("Type_Lodg", to_str), ("Etat_Bat", to_str), ("Nom", to_str),
            ("Mat_Bati", to_str), ("Id_Parcel", to_int), ("WKT_Geometry", to_str),
            ("propertyType", to_str),
            *_listing_layout(
                extra=[
                    ("price", to_decimal), ("rentPrice", to_decimal),
                    ("pricePerSqM", to_decimal),
                ],
                trailing_flags=[
                    ("totalFloors", to_int), ("totalUnits", to_int),
                    ("hasElevator", to_bool), ("surfaceArea", to_num),
                    ("doorNumber", to_str), ("address", to_str), ("bedrooms", to_int),
                    ("bathrooms", to_int), ("kitchens", to_int), ("livingRooms", to_int),
                    ("floorLevel", to_int), ("hasGenerator", to_bool),
                    ("hasParking", to_bool), ("parkingSpaces", to_int),
                    ("hasPool", to_bool), ("hasGarden", to_bool),
                    ("hasSecurity", to_bool), ("hasAirConditioning", to_bool),
                    ("hasFurnished", to_bool), ("hasBalcony", to_bool),
                    ("hasTerrace", to_bool), ("amenities", to_str),
                ],
            ),
            ("createdById", to_str),
        ],
        "Property": [
            ("Id_Prop", to_int), ("Id_Parcel", to_int), ("propertyType", to_str),
            ("title", to_str), ("slug", to_str), ("description", to_str),
            ("category", to_str), ("listingType", to_str), ("listingStatus", to_str),
            ("price", to_decimal), ("rentPrice", to_decimal), ("currency", to_str),
            ("surfaceArea", to_num), ("bedrooms", to_int), ("bathrooms", to_int),
            ("featured", to_bool), ("createdById", to_str),
        ],
        "Media": [
            ("id", to_int), ("entityType", to_str), ("url", to_str), ("type", to_str),
            ("order", to_int), ("caption", to_str), ("isPrimary", to_bool),
            ("entityId", to_int),
        ],
    }


_LOTISSEMENT_FLAGS = ("featured", "hasRoadAccess", "hasElectricity", "hasWater")
_PARCELLE_FLAGS = ("featured", "isForDevelopment")
_BATIMENT_FLAGS = (
    "featured", "hasElevator", "hasGenerator", "hasParking", "hasPool", "hasGarden",
    "hasSecurity", "hasAirConditioning", "hasFurnished", "hasBalcony", "hasTerrace",
)

# (sheet, entity, 子側 FK 列 -> (参照先 entity, 参照先列)), 追加列
_JUNCTIONS: tuple[tuple[str, str, tuple[tuple[str, str], ...], Layout], ...] = (
    ("Payer", "payer",
     (("Id_Parcel", "parcelle"), ("Id_Bat", "batiment"), ("Id_Taxe", "taxe_immobiliere")),
     (("date_paye", to_int),)),
    ("Limitrophe", "limitrophe", (("Id_Lotis", "lotissement"), ("Id_Riv", "riviere")), ()),
    ("Alimenter", "alimenter", (("Id_Bat", "batiment"), ("Id_Reseaux", "reseau_energetique")), ()),
    ("Contenir", "contenir", (("Id_Parcel", "parcelle"), ("Id_Borne", "borne")), ()),
    ("Trouver", "trouver", (("Id_Parcel", "parcelle"), ("Id_Infras", "infrastructure")), ()),
    ("Eclairer", "eclairer", (("Id_Parcel", "parcelle"), ("Id_Equip", "equipement")), ()),
    ("Desservir", "desservir", (("Id_Parcel", "parcelle"), ("Id_Rte", "route")), ()),
    ("Approvisionner", "approvisionner", (("Id_Bat", "batiment"), ("Id_Reseaux", "reseau_en_eau")), ()),
)


def _split(layout: Layout) -> tuple[tuple[str, ...], tuple[Coercer, ...]]:
    return tuple(f for f, _ in layout), tuple(c for _, c in layout)


def build_descriptors(
    *,
    required_sheets: Iterable[str] = DEFAULT_REQUIRED_SHEETS,
    property_types: Iterable[str] = PROPERTY_TYPES,
    default_currency: str = DEFAULT_CURRENCY,
    serial_date_epoch: date = DEFAULT_SERIAL_EPOCH,
) -> tuple[SheetDescriptor, ...]:
    """Build the ordered descriptor set.

    Args:
        required_sheets: sheet names whose absence fails the import
        property_types: allowed values for ``Property.propertyType`` (and the
            values kept for ``Batiment.propertyType``)
        default_currency: currency applied to listing rows without one
        serial_date_epoch: day 0 of spreadsheet serial dates

    Raises:
        ValueError: unknown sheet in ``required_sheets``
        DescriptorOrderError: dependency order violated
    """
    required = set(required_sheets)
    types = tuple(t.strip().upper() for t in property_types)
    layouts = _layouts(partial(to_date, epoch=serial_date_epoch))
    entries: list[dict[str, Any]] = []

    def independent(sheet: str, entity: str) -> None:
        fields, coercers = _split(layouts[sheet])
        entries.append(dict(
            sheet_name=sheet, entity=entity, coercers=coercers,
            transform=partial(_identified, fields=fields, id_field=fields[0]),
            unique_key=(fields[0],),
        ))

    for sheet in (
        "Route", "Riviere", "Equipement", "Infrastructure", "Borne",
        "Taxe_immobiliere", "Reseau_energetique", "Reseau_en_eau", "Region",
    ):
        independent(sheet, sheet.lower())

    hierarchy: tuple[tuple[str, str, str, str], ...] = (
        # sheet, 親参照列, 親 entity, 親の PK
        ("Departement", "Id_Reg", "region", "Id_Reg"),
        ("Arrondissement", "Id_Dept", "departement", "Id_Dept"),
    )
    for sheet, ref, parent, parent_key in hierarchy:
        fields, coercers = _split(layouts[sheet])
        entries.append(dict(
            sheet_name=sheet, entity=sheet.lower(), coercers=coercers,
            transform=partial(_identified, fields=fields, id_field=fields[0], optional_refs=(ref,)),
            unique_key=(fields[0],),
            foreign_keys=(ForeignKey(ref, parent, parent_key),),
        ))

    listings: tuple[tuple[str, str, str, str, str, tuple[str, ...], bool], ...] = (
        ("Lotissement", "Id_Arrond", "arrondissement", "Id_Arrond", "LAND", _LOTISSEMENT_FLAGS, False),
        ("Parcelle", "Id_Lotis", "lotissement", "Id_Lotis", "LAND", _PARCELLE_FLAGS, False),
        ("Batiment", "Id_Parcel", "parcelle", "Id_Parcel", "RESIDENTIAL", _BATIMENT_FLAGS, True),
    )
    for sheet, ref, parent, parent_key, category, flags, typed in listings:
        fields, coercers = _split(layouts[sheet])
        entries.append(dict(
            sheet_name=sheet, entity=sheet.lower(), coercers=coercers,
            transform=partial(
                _listing, fields=fields, id_field=fields[0], optional_refs=(ref,),
                default_category=category, currency=default_currency, flags=flags,
                property_types=types if typed else None,
            ),
            unique_key=(fields[0],),
            foreign_keys=(ForeignKey(ref, parent, parent_key),),
        ))

    fields, coercers = _split(layouts["Property"])
    entries.append(dict(
        sheet_name="Property", entity="property", coercers=coercers,
        transform=partial(_property, fields=fields, property_types=types, currency=default_currency),
        unique_key=("Id_Prop",),
        foreign_keys=(ForeignKey("Id_Parcel", "parcelle", "Id_Parcel", required=True),),
    ))

    fields, coercers = _split(layouts["Media"])
    entries.append(dict(
        sheet_name="Media", entity="media", coercers=coercers,
        transform=partial(_media, fields=fields),
        foreign_keys=tuple(ForeignKey(col, ent, key) for col, ent, key in _MEDIA_TARGETS.values()),
    ))

    for sheet, entity, refs, extra in _JUNCTIONS:
        key_fields = tuple(f for f, _ in refs)
        fields, coercers = _split([*((f, to_int) for f in key_fields), *extra])
        entries.append(dict(
            sheet_name=sheet, entity=entity, coercers=coercers,
            transform=partial(_junction, fields=fields, key_fields=key_fields),
            unique_key=key_fields,
            foreign_keys=tuple(ForeignKey(f, ent, f, required=True) for f, ent in refs),
        ))

    known = {s["sheet_name"] for s in entries}
    unknown = required - known
    if unknown:
        raise ValueError(f"unknown required sheets: {sorted(unknown)}")

    descriptors = tuple(
        SheetDescriptor(
            column_count=len(entry["coercers"]),
            required=entry["sheet_name"] in required,
            position=pos,
            **entry,
        )
        for pos, entry in enumerate(entries, start=1)
    )
    validate_dependency_order(descriptors)
    return descriptors


def validate_dependency_order(descriptors: Sequence[SheetDescriptor]) -> None:
    """Raise ``DescriptorOrderError`` unless every FK target is loaded earlier."""
    loaded: set[str] = set()
    producers = {d.entity for d in descriptors}
    for d in descriptors:
        for dep in d.dependencies:
            if dep not in producers:
                raise DescriptorOrderError(
                    f"{d.sheet_name} references unknown entity '{dep}'"
                )
            if dep not in loaded:
                raise DescriptorOrderError(
                    f"{d.sheet_name} references '{dep}' before it is imported"
                )
        loaded.add(d.entity)


def import_plan(descriptors: Sequence[SheetDescriptor]) -> list[dict[str, Any]]:
    """Tabular view of the import order (CLI ``--plan``)."""
    return [
        {
            "position": d.position,
            "sheet": d.sheet_name,
            "entity": d.entity,
            "required": d.required,
            "columns": d.column_count,
            "depends_on": list(d.dependencies),
        }
        for d in descriptors
    ]


def get_descriptor(
    sheet_name: str, descriptors: Sequence[SheetDescriptor] | None = None
) -> SheetDescriptor | None:
    for d in descriptors if descriptors is not None else DEFAULT_DESCRIPTORS:
        if d.sheet_name == sheet_name:
            return d
    return None


DEFAULT_DESCRIPTORS: tuple[SheetDescriptor, ...] = build_descriptors()
