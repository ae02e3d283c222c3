"""Account information parsing and formatting."""

from pydantic import BaseModel, ConfigDict, Field, ValidationError

MAX_BYTES = 2**64 - 1

BYTE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB", "EB"]

QUOTA_PREFIX = "Quota"
PREMIUM_DATA_PREFIX = "Premium Data"
ACCOUNT_TYPE_PREFIX = "Account type"


class AccountParseError(Exception):
    """Error parsing ``warp-cli account`` output."""

    pass


class AccountSnapshot(BaseModel):
    """Point-in-time copy of the account usage figures."""

    model_config = ConfigDict(frozen=True)

    quota_bytes: int = Field(default=0, ge=0, le=MAX_BYTES)
    premium_data_bytes: int = Field(default=0, ge=0, le=MAX_BYTES)
    account_type: str = ""

    @property
    def quota(self) -> str:
        return format_bytes(self.quota_bytes)

    @property
    def premium_data(self) -> str:
        return format_bytes(self.premium_data_bytes)


def format_bytes(size_in_bytes: int) -> str:
    """Render a byte count with decimal (1000-based) units.

    >>> format_bytes(1_500_000)
    '1.50 MB'
    """
    size = float(size_in_bytes)
    unit_index = 0
    while size >= 1000 and unit_index < len(BYTE_UNITS) - 1:
        size /= 1000
        unit_index += 1
    return f"{size:.2f} {BYTE_UNITS[unit_index]}"


def _value(line: str) -> str:
    return line.split(":", 1)[1].strip() if ":" in line else ""


def _parse_int(field: str, raw: str) -> int:
    # ASCII digits only: no sign, no underscores, no other scripts
    if not (raw.isascii() and raw.isdigit()):
        raise AccountParseError(f"{field} is not a number: {raw!r}")
    return int(raw)


def parse_account(output: str) -> AccountSnapshot:
    """Parse ``warp-cli account`` output into a snapshot.

    Lines are matched by prefix in any order and unrecognized lines are
    ignored. A recognized field with a non-numeric value, or a missing
    field, raises AccountParseError.

    Raises:
        AccountParseError: If the output cannot produce a full snapshot
    """
    fields: dict[str, int | str] = {}

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith(QUOTA_PREFIX):
            fields["quota_bytes"] = _parse_int(QUOTA_PREFIX, _value(line))
        elif line.startswith(PREMIUM_DATA_PREFIX):
            fields["premium_data_bytes"] = _parse_int(PREMIUM_DATA_PREFIX, _value(line))
        elif line.startswith(ACCOUNT_TYPE_PREFIX):
            fields["account_type"] = _value(line)

    missing = [
        name
        for name, key in (
            (QUOTA_PREFIX, "quota_bytes"),
            (PREMIUM_DATA_PREFIX, "premium_data_bytes"),
            (ACCOUNT_TYPE_PREFIX, "account_type"),
        )
        if key not in fields
    ]
    if missing:
        raise AccountParseError(f"Missing account fields: {', '.join(missing)}")

    try:
        return AccountSnapshot(**fields)
    except ValidationError as e:
        raise AccountParseError(f"Account figures out of range: {e}") from e
