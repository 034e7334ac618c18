from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ..money_utils import parse_decimal, to_cents
from ..validation import MAX_PRICE_CENTS


NUMERIC_INTEGER = "integer"
NUMERIC_DECIMAL = "decimal"
NUMERIC_MODES = (NUMERIC_INTEGER, NUMERIC_DECIMAL)

UNKNOWN_CATEGORY_CREATE = "create"
UNKNOWN_CATEGORY_REJECT = "reject"
UNKNOWN_CATEGORY_POLICIES = (UNKNOWN_CATEGORY_CREATE, UNKNOWN_CATEGORY_REJECT)

CATEGORY_KNOWN = "known"
CATEGORY_NEEDS_CREATION = "needs_creation"
CATEGORY_INVALID = "invalid"

# The spreadsheet header is row 1, so the first data row is row 2.
FIRST_DATA_ROW = 2

# Maximum fractional digits accepted for stock in decimal mode (NUMERIC(12, 3))
QUANTITY_PLACES = 3

TEMPLATE_COLUMNS = [
    "name",
    "brand",
    "category",
    "unit_size",
    "barcode",
    "buying_price",
    "selling_price",
    "stock",
    "reorder_level",
    "supplier",
]

TEMPLATE_SAMPLE_ROWS = [
    ["Dove Soap Bar", "Dove", "Soaps", "100g", "123456789", "45.00", "65.00", "50", "10", "Supplier ABC"],
    ["Nivea Lotion", "Nivea", "Lotions", "200ml", "987654321", "120.00", "180.00", "25", "5", "Supplier XYZ"],
]

# Canonical field -> accepted header names, in preference order
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "buying_price": ("buying_price", "cost_price"),
    "stock": ("stock", "quantity_in_stock"),
    "reorder_level": ("reorder_level", "low_stock_threshold"),
}


class SourceRow(dict):
    """A raw upload row that remembers the file row it was read from."""

    def __init__(self, *args, row_number: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.row_number = row_number


@dataclass(frozen=True)
class ImportOptions:
    """
    Validation policy for one import.

    numeric_mode: "integer" rejects fractional stock / reorder levels,
                  "decimal" keeps them.
    unknown_category: "create" accepts unknown labels (created at commit),
                      "reject" turns them into field errors.
    """
    numeric_mode: str = NUMERIC_INTEGER
    unknown_category: str = UNKNOWN_CATEGORY_CREATE
    require_unit_size: bool = False
    default_reorder_level: int = 10

    def __post_init__(self):
        if self.numeric_mode not in NUMERIC_MODES:
            raise ValueError(f"numeric_mode must be one of {NUMERIC_MODES}")
        if self.unknown_category not in UNKNOWN_CATEGORY_POLICIES:
            raise ValueError(f"unknown_category must be one of {UNKNOWN_CATEGORY_POLICIES}")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ImportOptions":
        return cls(
            numeric_mode=config.get("IMPORT_NUMERIC_MODE", NUMERIC_INTEGER),
            unknown_category=config.get("IMPORT_UNKNOWN_CATEGORY", UNKNOWN_CATEGORY_CREATE),
            require_unit_size=bool(config.get("IMPORT_REQUIRE_UNIT_SIZE", False)),
            default_reorder_level=int(config.get("DEFAULT_REORDER_LEVEL", 10)),
        )


@dataclass(frozen=True)
class FieldError:
    row: int
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"row": self.row, "field": self.field, "message": self.message}


@dataclass
class ProductRecord:
    """A fully typed product ready for insertion."""
    row_number: int
    name: str
    category: str
    buying_price_cents: int
    selling_price_cents: int
    stock: int | Decimal
    reorder_level: int | Decimal
    brand: str | None = None
    unit_size: str | None = None
    barcode: str | None = None
    supplier: str | None = None

    def to_dict(self) -> dict:
        def number(v):
            return float(v) if isinstance(v, Decimal) else v

        return {
            "row_number": self.row_number,
            "name": self.name,
            "category": self.category,
            "brand": self.brand,
            "unit_size": self.unit_size,
            "barcode": self.barcode,
            "buying_price_cents": self.buying_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "stock": number(self.stock),
            "reorder_level": number(self.reorder_level),
            "supplier": self.supplier,
        }


@dataclass
class RowValidation:
    valid: bool
    record: ProductRecord | None
    errors: list[FieldError]
    category_status: str


@dataclass
class ValidationReport:
    records: list[ProductRecord] = field(default_factory=list)
    errors: list[FieldError] = field(default_factory=list)
    total_rows: int = 0
    categories_to_create: list[str] = field(default_factory=list)

    @property
    def invalid_rows(self) -> int:
        return len({e.row for e in self.errors})

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "valid_rows": len(self.records),
            "invalid_rows": self.invalid_rows,
            "records": [r.to_dict() for r in self.records],
            "errors": [e.to_dict() for e in self.errors],
            "categories_to_create": list(self.categories_to_create),
        }


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _category_key(value: Any) -> str:
    return (_to_text(value) or "").lower()


def normalize_row(raw_row: Mapping[str, Any]) -> dict[str, Any]:
    """
    Lower-case and trim header names and fold aliases onto canonical fields.

    The header that supplied each aliased field is kept under
    "_source_columns" so errors name the column the user actually wrote.
    """
    cleaned: dict[str, Any] = {}
    for key, value in (raw_row or {}).items():
        if key is None:
            continue
        cleaned[str(key).strip().lower()] = value

    normalized: dict[str, Any] = dict(cleaned)
    sources: dict[str, str] = {}
    for canonical, aliases in FIELD_ALIASES.items():
        chosen = aliases[0]
        for alias in aliases:
            if _to_text(cleaned.get(alias)) is not None:
                chosen = alias
                break
        normalized[canonical] = cleaned.get(chosen)
        sources[canonical] = chosen
    normalized["_source_columns"] = sources
    return normalized


def _parse_price(value: Any, column: str, row_number: int, errors: list[FieldError]) -> int | None:
    if _to_text(value) is None:
        errors.append(FieldError(row_number, column, "required"))
        return None
    try:
        cents = to_cents(value)
    except ValueError:
        errors.append(FieldError(row_number, column, "must be a number"))
        return None
    if cents < 0:
        errors.append(FieldError(row_number, column, "must be a non-negative number"))
        return None
    if cents > MAX_PRICE_CENTS:
        errors.append(FieldError(row_number, column, f"cannot exceed {MAX_PRICE_CENTS / 100:,.2f}"))
        return None
    return cents


def _parse_quantity(
    value: Any,
    column: str,
    row_number: int,
    errors: list[FieldError],
    numeric_mode: str,
) -> int | Decimal | None:
    try:
        amount = parse_decimal(value)
    except ValueError:
        errors.append(FieldError(row_number, column, "must be a number"))
        return None
    if amount < 0:
        errors.append(FieldError(row_number, column, "must be a non-negative number"))
        return None

    if amount == amount.to_integral_value():
        return int(amount)
    if numeric_mode == NUMERIC_INTEGER:
        errors.append(FieldError(row_number, column, "must be a whole number"))
        return None
    # Trailing zeros ("1.5000") do not count as places
    amount = amount.normalize()
    if -amount.as_tuple().exponent > QUANTITY_PLACES:
        errors.append(FieldError(row_number, column, f"must have at most {QUANTITY_PLACES} decimal places"))
        return None
    return amount


def validate_row(
    row: Mapping[str, Any],
    row_number: int,
    known_categories: Iterable[str],
    options: ImportOptions | None = None,
) -> RowValidation:
    """
    Validate one raw import row. Pure: never touches the database.

    known_categories is any iterable of existing category names (matched
    trimmed and case-insensitively). An unknown category is either accepted
    as needs_creation or rejected, depending on options.unknown_category;
    creation itself only happens in the commit phase.
    """
    options = options or ImportOptions()
    known = {_category_key(c) for c in known_categories}
    row = normalize_row(row)
    sources = row["_source_columns"]
    errors: list[FieldError] = []

    name = _to_text(row.get("name"))
    if not name:
        errors.append(FieldError(row_number, "name", "required"))

    category = _to_text(row.get("category"))
    if not category:
        errors.append(FieldError(row_number, "category", "required"))
        category_status = CATEGORY_INVALID
    elif category.lower() in known:
        category_status = CATEGORY_KNOWN
    elif options.unknown_category == UNKNOWN_CATEGORY_CREATE:
        category_status = CATEGORY_NEEDS_CREATION
    else:
        errors.append(FieldError(row_number, "category", f"unknown category '{category}'"))
        category_status = CATEGORY_INVALID

    unit_size = _to_text(row.get("unit_size"))
    if options.require_unit_size and not unit_size:
        errors.append(FieldError(row_number, "unit_size", "required"))

    buying = _parse_price(row.get("buying_price"), sources["buying_price"], row_number, errors)
    selling = _parse_price(row.get("selling_price"), "selling_price", row_number, errors)

    stock = None
    if _to_text(row.get("stock")) is None:
        errors.append(FieldError(row_number, sources["stock"], "required"))
    else:
        stock = _parse_quantity(row.get("stock"), sources["stock"], row_number, errors, options.numeric_mode)

    if _to_text(row.get("reorder_level")) is None:
        reorder_level = options.default_reorder_level
    else:
        reorder_level = _parse_quantity(
            row.get("reorder_level"), sources["reorder_level"], row_number, errors, options.numeric_mode
        )

    if errors:
        return RowValidation(valid=False, record=None, errors=errors, category_status=category_status)

    record = ProductRecord(
        row_number=row_number,
        name=name,
        category=category,
        buying_price_cents=buying,
        selling_price_cents=selling,
        stock=stock,
        reorder_level=reorder_level,
        brand=_to_text(row.get("brand")),
        unit_size=unit_size,
        barcode=_to_text(row.get("barcode")),
        supplier=_to_text(row.get("supplier")),
    )
    return RowValidation(valid=True, record=record, errors=[], category_status=category_status)


def validate_rows(
    rows: Iterable[Mapping[str, Any]],
    known_categories: Iterable[str],
    options: ImportOptions | None = None,
) -> ValidationReport:
    """Validate every row; row numbers map back to the user's spreadsheet lines."""
    options = options or ImportOptions()
    known = [c for c in known_categories]
    report = ValidationReport()
    pending: dict[str, str] = {}

    for index, row in enumerate(rows):
        row_number = getattr(row, "row_number", None) or index + FIRST_DATA_ROW
        report.total_rows += 1
        result = validate_row(row, row_number, known, options)
        if not result.valid:
            report.errors.extend(result.errors)
            continue
        report.records.append(result.record)
        if result.category_status == CATEGORY_NEEDS_CREATION:
            pending.setdefault(result.record.category.lower(), result.record.category)

    report.categories_to_create = list(pending.values())
    return report


def template_rows() -> list[list[str]]:
    return [list(TEMPLATE_COLUMNS)] + [list(r) for r in TEMPLATE_SAMPLE_ROWS]
