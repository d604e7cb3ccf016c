"""
Fixed-point dose helpers
Doses are Decimal values with at most three decimal places (matches the Numeric(10, 3) columns)
"""
from decimal import Decimal, InvalidOperation

from dosetrack.errors import ValidationError

DOSE_QUANT = Decimal('0.001')


def to_dose(value, field='dosage'):
    """Parse a number or numeric string into an exact three-place Decimal dose"""
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, f'{field} must be a number')
    if isinstance(value, float):
        # Go through repr so 0.1 stays 0.1 instead of the binary expansion
        value = repr(value)
    try:
        dose = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(field, f'{field} must be a number, got {value!r}', cause=e)
    if not dose.is_finite():
        raise ValidationError(field, f'{field} must be a finite number')

    try:
        quantized = dose.quantize(DOSE_QUANT)
    except InvalidOperation as e:
        raise ValidationError(field, f'{field} is too large, got {value}', cause=e)
    if quantized != dose:
        raise ValidationError(field, f'{field} allows at most 3 decimal places, got {value}')
    return quantized


def format_dose(dose):
    """Render a dose without trailing zeros: 4.000 -> '4', 3.500 -> '3.5'"""
    return format(dose.normalize(), 'f')


def dose_str(dose):
    """Serialize a dose for JSON payloads (None stays None)"""
    if dose is None:
        return None
    return format_dose(dose)
