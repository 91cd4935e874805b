"""Shared configuration loader for splitpay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml
from eth_account import Account
from eth_utils import is_address, to_checksum_address

from .planner import DEFAULT_CHUNK_SIZE


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".splitpay.yaml"
DEFAULT_SAFE_SERVICE_URL = "https://safe-transaction-avalanche.safe.global"
DEFAULT_REVIEW_DELAY_SECONDS = 15.0
DEFAULT_PRIORITY_FEE_GWEI = 2
DEFAULT_FEE_MULTIPLIER = 2
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 300.0
DEFAULT_NATIVE_SYMBOL = "AVAX"


@dataclass
class SplitPayConfig:
    """Everything one payment run needs, passed explicitly to the engine."""

    rpc_url: str
    private_key: str
    splitter: str
    token: str | None = None
    chain_id: int | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    multisig: str | None = None
    multisig_type: str | None = None
    safe_service_url: str = DEFAULT_SAFE_SERVICE_URL
    review_delay_seconds: float = DEFAULT_REVIEW_DELAY_SECONDS
    priority_fee_gwei: int = DEFAULT_PRIORITY_FEE_GWEI
    fee_multiplier: int = DEFAULT_FEE_MULTIPLIER
    receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS
    native_symbol: str = DEFAULT_NATIVE_SYMBOL

    @property
    def wallet_address(self) -> str:
        return Account.from_key(self.private_key).address

    @property
    def funding_address(self) -> str:
        """Account whose balance and allowance fund the splitter calls."""

        return self.multisig if self.multisig else self.wallet_address

    def __repr__(self) -> str:
        return (
            f"SplitPayConfig(rpc_url={self.rpc_url!r}, splitter={self.splitter!r}, "
            f"token={self.token!r}, chunk_size={self.chunk_size}, multisig={self.multisig!r}, "
            f"multisig_type={self.multisig_type!r}, private_key='***')"
        )


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ConfigurationError(f"Invalid integer in {source}: {raw}")
    try:
        return int(str(raw).strip(), 0) if isinstance(raw, str) else int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return default


def _checked_address(raw: Any, *, field: str) -> str | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, int) and not isinstance(raw, bool):
        # YAML loads unquoted 0x... values as integers.
        raise ConfigurationError(f"The {field} address was read as a number; quote it in YAML")
    if not isinstance(raw, str) or not is_address(raw.strip()):
        raise ConfigurationError(f"Invalid {field} address: {raw}")
    return to_checksum_address(raw.strip())


def _checked_endpoint(raw: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    return raw


def _normalize_private_key(raw: Any) -> str:
    if isinstance(raw, int) and not isinstance(raw, bool):
        raise ConfigurationError("The signing key was read as a number; quote it in YAML")
    key = str(raw).strip()
    if not key.startswith("0x"):
        key = "0x" + key
    try:
        Account.from_key(key)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Signing key is not a valid private key") from exc
    return key


def load_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> SplitPayConfig:
    """Load run configuration from overrides, environment variables and YAML."""

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None
    path = Path(config_path).expanduser() if explicit_path else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    splitter_section = _section(file_config, "splitter", path)
    funding_section = _section(file_config, "funding", path)
    dispatch_section = _section(file_config, "dispatch", path)

    override_map = {key: value for key, value in dict(overrides or {}).items() if value is not None}

    rpc_url = _first_value(
        override_map.get("rpc_url"),
        env_map.get("SPLITPAY_RPC_URL"),
        rpc_section.get("endpoint"),
    )
    if not rpc_url:
        raise ConfigurationError(
            "An RPC endpoint must be provided via SPLITPAY_RPC_URL or rpc.endpoint in the config file"
        )

    private_key = _first_value(
        override_map.get("private_key"),
        env_map.get("SPLITPAY_PRIVATE_KEY"),
        rpc_section.get("private_key"),
    )
    if not private_key:
        raise ConfigurationError(
            "A signing key must be provided via SPLITPAY_PRIVATE_KEY or rpc.private_key in the config file"
        )

    splitter = _checked_address(
        _first_value(
            override_map.get("splitter"),
            env_map.get("SPLITPAY_SPLITTER"),
            splitter_section.get("address"),
        ),
        field="splitter",
    )
    if splitter is None:
        raise ConfigurationError(
            "The splitter contract address must be provided via SPLITPAY_SPLITTER or splitter.address"
        )

    token = _checked_address(
        _first_value(
            override_map.get("token"),
            env_map.get("SPLITPAY_TOKEN"),
            splitter_section.get("token"),
        ),
        field="token",
    )

    chunk_size = _first_value(
        _coerce_int(override_map.get("chunk_size"), source="overrides"),
        _coerce_int(env_map.get("SPLITPAY_CHUNK_SIZE"), source="SPLITPAY_CHUNK_SIZE"),
        _coerce_int(splitter_section.get("chunk_size"), source=f"{path} splitter.chunk_size"),
        default=DEFAULT_CHUNK_SIZE,
    )
    if chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be a positive integer, got {chunk_size}")

    chain_id = _first_value(
        _coerce_int(override_map.get("chain_id"), source="overrides"),
        _coerce_int(env_map.get("SPLITPAY_CHAIN_ID"), source="SPLITPAY_CHAIN_ID"),
        _coerce_int(rpc_section.get("chain_id"), source=f"{path} rpc.chain_id"),
    )

    multisig = _checked_address(
        _first_value(
            override_map.get("multisig"),
            env_map.get("SPLITPAY_MULTISIG"),
            funding_section.get("multisig"),
        ),
        field="multisig",
    )
    multisig_type = _first_value(
        override_map.get("multisig_type"),
        env_map.get("SPLITPAY_MULTISIG_TYPE"),
        funding_section.get("multisig_type"),
    )
    if multisig and not multisig_type:
        raise ConfigurationError(
            "A multisig address was configured without a multisig type "
            "(SPLITPAY_MULTISIG_TYPE or funding.multisig_type)"
        )

    review_delay = _first_value(
        _coerce_float(override_map.get("review_delay_seconds"), source="overrides"),
        _coerce_float(env_map.get("SPLITPAY_REVIEW_DELAY"), source="SPLITPAY_REVIEW_DELAY"),
        _coerce_float(
            dispatch_section.get("review_delay_seconds"),
            source=f"{path} dispatch.review_delay_seconds",
        ),
        default=DEFAULT_REVIEW_DELAY_SECONDS,
    )
    if review_delay < 0:
        raise ConfigurationError("Review delay cannot be negative")

    return SplitPayConfig(
        rpc_url=_checked_endpoint(str(rpc_url)),
        private_key=_normalize_private_key(private_key),
        splitter=splitter,
        token=token,
        chain_id=chain_id,
        chunk_size=chunk_size,
        multisig=multisig,
        multisig_type=str(multisig_type).strip() if multisig_type else None,
        safe_service_url=str(
            _first_value(
                override_map.get("safe_service_url"),
                env_map.get("SPLITPAY_SAFE_SERVICE_URL"),
                funding_section.get("safe_service_url"),
                default=DEFAULT_SAFE_SERVICE_URL,
            )
        ).rstrip("/"),
        review_delay_seconds=review_delay,
        priority_fee_gwei=_first_value(
            _coerce_int(dispatch_section.get("priority_fee_gwei"), source=f"{path} dispatch.priority_fee_gwei"),
            default=DEFAULT_PRIORITY_FEE_GWEI,
        ),
        fee_multiplier=_first_value(
            _coerce_int(dispatch_section.get("fee_multiplier"), source=f"{path} dispatch.fee_multiplier"),
            default=DEFAULT_FEE_MULTIPLIER,
        ),
        receipt_timeout_seconds=_first_value(
            _coerce_float(
                dispatch_section.get("receipt_timeout_seconds"),
                source=f"{path} dispatch.receipt_timeout_seconds",
            ),
            default=DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        ),
        native_symbol=str(
            _first_value(splitter_section.get("native_symbol"), default=DEFAULT_NATIVE_SYMBOL)
        ),
    )
