"""
Cargo record fields that rule conditions may reference.

Records arrive as flat mappings from the cargo store. Conditions never
index them directly; every lookup goes through ``read_field`` so that the
set of addressable attributes stays closed and each one has a typed
accessor.
"""

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from shared.errors import UnknownFieldError

FieldValue = Optional[Union[str, float]]
Record = Mapping[str, Any]


class CargoField(str, Enum):
    """Record attributes addressable by rule conditions."""
    ROUTE = "route"
    ORIG_OE = "orig_oe"
    DEST_OE = "dest_oe"
    DES_NO = "des_no"
    REC_ID = "rec_id"
    REC_NUMB = "rec_numb"
    INB_FLIGHT_NO = "inb_flight_no"
    OUTB_FLIGHT_NO = "outb_flight_no"
    INB_FLIGHT_DATE = "inb_flight_date"
    OUTB_FLIGHT_DATE = "outb_flight_date"
    MAIL_CAT = "mail_cat"
    MAIL_CLASS = "mail_class"
    WEIGHT = "weight"
    DISTANCE = "distance"
    CUSTOMER = "customer"
    INVOICE = "invoice"
    SECTOR = "sector"


# Names used by the rule editor and older rule exports.
FIELD_ALIASES: Dict[str, CargoField] = {
    "orig_dest_oe": CargoField.ROUTE,
    "flight_number": CargoField.INB_FLIGHT_NO,
    "mail_category": CargoField.MAIL_CAT,
    "total_kg": CargoField.WEIGHT,
    "assigned_customer": CargoField.CUSTOMER,
    "distance_km": CargoField.DISTANCE,
}

NUMERIC_FIELDS = frozenset({CargoField.WEIGHT, CargoField.DISTANCE})

# Record keys tried in order for each field.
_RECORD_KEYS: Dict[CargoField, Tuple[str, ...]] = {
    CargoField.ROUTE: ("route",),
    CargoField.ORIG_OE: ("orig_oe",),
    CargoField.DEST_OE: ("dest_oe",),
    CargoField.DES_NO: ("des_no",),
    CargoField.REC_ID: ("rec_id",),
    CargoField.REC_NUMB: ("rec_numb",),
    CargoField.INB_FLIGHT_NO: ("inb_flight_no", "flight_number"),
    CargoField.OUTB_FLIGHT_NO: ("outb_flight_no",),
    CargoField.INB_FLIGHT_DATE: ("inb_flight_date",),
    CargoField.OUTB_FLIGHT_DATE: ("outb_flight_date",),
    CargoField.MAIL_CAT: ("mail_cat",),
    CargoField.MAIL_CLASS: ("mail_class",),
    CargoField.WEIGHT: ("weight", "total_kg"),
    CargoField.DISTANCE: ("distance", "distance_km"),
    CargoField.CUSTOMER: ("customer", "assigned_customer"),
    CargoField.INVOICE: ("invoice",),
    CargoField.SECTOR: ("sector",),
}


def parse_field(name: Union[str, CargoField]) -> CargoField:
    """Resolve a field name or alias, rejecting anything outside the field set."""
    if isinstance(name, CargoField):
        return name
    key = str(name).strip().lower()
    if key in FIELD_ALIASES:
        return FIELD_ALIASES[key]
    try:
        return CargoField(key)
    except ValueError:
        raise UnknownFieldError(str(name)) from None


def _first_present(record: Record, keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def as_text(value: Any) -> FieldValue:
    """Untrimmed text form of a stored value; integral floats drop the ``.0``."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _number(value: Any) -> FieldValue:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    if not text:
        return text
    try:
        return float(text)
    except ValueError:
        # Left as text: emptiness and string operators still apply.
        return text


def _route(record: Record) -> FieldValue:
    route = record.get("route")
    if route is not None:
        return as_text(route)
    origin, destination = record.get("orig_oe"), record.get("dest_oe")
    if origin and destination:
        return f"{origin}-{destination}"
    return as_text(origin or destination)


def _accessor(field: CargoField) -> Callable[[Record], FieldValue]:
    keys = _RECORD_KEYS[field]
    convert = _number if field in NUMERIC_FIELDS else as_text
    return lambda record: convert(_first_present(record, keys))


FIELD_ACCESSORS: Dict[CargoField, Callable[[Record], FieldValue]] = {
    field: _accessor(field) for field in CargoField
}
FIELD_ACCESSORS[CargoField.ROUTE] = _route


def read_field(record: Record, field: CargoField) -> FieldValue:
    """Read one field from a record; absent values come back as ``None``."""
    return FIELD_ACCESSORS[field](record)


def record_identifier(record: Record, index: int = 0) -> str:
    """Stable identifier of a cargo record within a batch."""
    for key in ("id", "rec_id"):
        value = record.get(key)
        if value is not None and str(value) != "":
            return str(value)
    return f"#{index}"
