from __future__ import annotations
from decimal import Decimal, InvalidOperation

NATIVE_DECIMALS = 18
DEFAULT_DECIMALS = 18


def format_units(raw: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Integer base units -> fixed-point decimal string ("1.5", "0.000001", "12.0")."""
    raw = int(raw)
    decimals = int(decimals)
    if decimals <= 0:
        return str(raw)
    sign = "-" if raw < 0 else ""
    whole, frac = divmod(abs(raw), 10 ** decimals)
    frac_s = str(frac).rjust(decimals, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{frac_s}"


def parse_units(value: str, decimals: int = DEFAULT_DECIMALS) -> int:
    """Inverse of format_units. Rejects values with more precision than `decimals`."""
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"not a decimal amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"not a decimal amount: {value!r}")
    # exact integer arithmetic; Decimal context precision would round long values
    sign, digits, exp = d.as_tuple()
    n = int("".join(map(str, digits)) or "0")
    shift = int(exp) + int(decimals)
    if shift >= 0:
        out = n * 10 ** shift
    else:
        out, rem = divmod(n, 10 ** -shift)
        if rem:
            raise ValueError(f"{value!r} has more than {decimals} decimals")
    return -out if sign else out


def short_amount(raw: int, decimals: int = DEFAULT_DECIMALS, places: int = 6) -> str:
    """Display form used in alerts: at most `places` significant fractional digits."""
    s = format_units(raw, decimals)
    if "." not in s:
        return s
    whole, frac = s.split(".", 1)
    if whole.lstrip("-") != "0":
        frac = frac[:places].rstrip("0")
        return f"{whole}.{frac}" if frac else whole
    # keep `places` digits after the leading zeros for dust amounts
    lead = len(frac) - len(frac.lstrip("0"))
    frac = frac[: lead + places].rstrip("0")
    return f"{whole}.{frac}" if frac else whole
