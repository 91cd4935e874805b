"""Load payment lists from CSV or YAML files.

Supported shapes:

* CSV with a header row: ``address,amount`` plus optional ``asset`` and
  ``name`` columns (``payee``/``to`` and ``token``/``label`` are accepted as
  aliases).
* YAML with a ``payments`` list. Entries are mappings
  (``{address, amount, asset?, name?}``) or ``[address, amount]`` pairs.
* YAML with a ``distribution`` block: one ``amount`` paid to every entry of
  ``recipients``.

YAML files may carry a ``payees`` address book mapping names to addresses.
A payment may reference a payee by name, and payments to a known address pick
up its name for display.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from .amounts import InvalidAmount, parse_amount
from .model import NATIVE_ASSET, PaymentInstruction

_ADDRESS_KEYS = ("address", "payee", "to", "recipient")
_AMOUNT_KEYS = ("amount", "value")
_ASSET_KEYS = ("asset", "token")
_NAME_KEYS = ("name", "label", "display_name")


class InputFormatError(ValueError):
    """Raised when a payment file cannot be read into payment rows."""


@dataclass(frozen=True)
class PaymentRow:
    payee: str
    amount: str
    asset: str
    name: str | None = None
    position: int = 0


def _pick(entry: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in entry and entry[key] not in (None, ""):
            return entry[key]
    return None


def _address_text(raw: Any) -> str:
    if isinstance(raw, int) and not isinstance(raw, bool):
        # YAML loads unquoted 0x... values as integers.
        raise InputFormatError(f"Address {raw} was read as a number; quote addresses in YAML")
    return str(raw).strip()


def _amount_text(raw: Any, position: int) -> str:
    if raw is None:
        raise InputFormatError(f"Payment {position} is missing an amount")
    if isinstance(raw, float):
        # YAML turns 1.5 into a float; use its repr so precision checks still apply.
        return repr(raw)
    return str(raw).strip()


class _AddressBook:
    def __init__(self, payees: Mapping[str, Any] | None) -> None:
        self.by_name: Dict[str, str] = {}
        self.by_address: Dict[str, str] = {}
        for name, address in (payees or {}).items():
            if address is None or isinstance(address, (bool, list, dict)):
                raise InputFormatError(f"Payee {name!r} must map to an address")
            address = _address_text(address)
            self.by_name[str(name)] = address
            self.by_address[address.lower()] = str(name)

    def resolve(self, reference: str, name: str | None) -> tuple[str, str | None]:
        if reference in self.by_name:
            return self.by_name[reference], name or reference
        return reference, name or self.by_address.get(reference.lower())


def _rows_from_entries(
    entries: List[Any], asset: str, book: _AddressBook
) -> List[PaymentRow]:
    rows: List[PaymentRow] = []
    for position, entry in enumerate(entries, start=1):
        if isinstance(entry, Mapping):
            reference = _pick(entry, _ADDRESS_KEYS)
            amount = _pick(entry, _AMOUNT_KEYS)
            entry_asset = _pick(entry, _ASSET_KEYS) or asset
            name = _pick(entry, _NAME_KEYS)
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            reference, amount = entry
            entry_asset, name = asset, None
        else:
            raise InputFormatError(
                f"Payment {position} must be a mapping or an [address, amount] pair"
            )
        if reference is None:
            raise InputFormatError(f"Payment {position} is missing an address")
        payee, display = book.resolve(_address_text(reference), str(name) if name else None)
        rows.append(
            PaymentRow(
                payee=payee,
                amount=_amount_text(amount, position),
                asset=_address_text(entry_asset),
                name=display,
                position=position,
            )
        )
    return rows


def _load_yaml_rows(data: Any, default_asset: str) -> List[PaymentRow]:
    if not isinstance(data, Mapping):
        raise InputFormatError("Payment file must contain a mapping")
    book = _AddressBook(data.get("payees"))
    asset = str(data.get("asset") or default_asset)

    if "payments" in data:
        entries = data["payments"] or []
        if not isinstance(entries, list):
            raise InputFormatError("'payments' must be a list")
        return _rows_from_entries(entries, asset, book)

    if "distribution" in data:
        block = data["distribution"] or {}
        if not isinstance(block, Mapping):
            raise InputFormatError("'distribution' must be a mapping")
        recipients = block.get("recipients") or []
        if not isinstance(recipients, list):
            raise InputFormatError("'distribution.recipients' must be a list")
        amount = block.get("amount")
        block_asset = str(block.get("asset") or asset)
        entries = [{"address": recipient, "amount": amount} for recipient in recipients]
        return _rows_from_entries(entries, block_asset, book)

    raise InputFormatError("Payment file needs a 'payments' list or a 'distribution' block")


def _load_csv_rows(path: Path, default_asset: str) -> List[PaymentRow]:
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        fields = {name.strip().lower() for name in reader.fieldnames or []}
        if not fields & set(_ADDRESS_KEYS) or not fields & set(_AMOUNT_KEYS):
            raise InputFormatError(f"{path} must have 'address' and 'amount' columns")
        entries = [
            {key.strip().lower(): (value or "").strip() for key, value in row.items() if key}
            for row in reader
        ]
    return _rows_from_entries(entries, default_asset, _AddressBook(None))


def load_payment_rows(path: str | Path, *, default_asset: str = NATIVE_ASSET) -> List[PaymentRow]:
    path = Path(path)
    if not path.exists():
        raise InputFormatError(f"Payment file does not exist: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return _load_csv_rows(path, default_asset)
    try:
        if suffix == ".json":
            data = json.loads(path.read_text())
        else:
            data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise InputFormatError(f"Failed to parse {path}: {exc}") from exc
    return _load_yaml_rows(data, default_asset)


def build_instructions(
    rows: Iterable[PaymentRow], *, unit: str = "base", decimals: int = 18
) -> List[PaymentInstruction]:
    """Convert rows to instructions; ``unit="decimal"`` scales by ``decimals``."""

    instructions: List[PaymentInstruction] = []
    for row in rows:
        try:
            amount = parse_amount(row.amount, decimals, unit=unit)
        except InvalidAmount as exc:
            raise InvalidAmount(row.amount, f"payment {row.position}: {exc.reason}") from exc
        instructions.append(
            PaymentInstruction(
                payee=row.payee, amount=amount, asset=row.asset, display_name=row.name
            )
        )
    return instructions
