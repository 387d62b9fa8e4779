from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP

HALF_HOUR = Decimal("0.5")


def to_decimal(value) -> Decimal:
    """Convierte int/float/str a Decimal sin arrastrar el error binario del float."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_up_to_half_hour(hours) -> float:
    """
    Redondea hacia arriba a la media hora más cercana.

    La media hora es el incremento facturable más pequeño; nunca se redondea
    hacia abajo.
    """
    doubled = (to_decimal(hours) * 2).to_integral_value(rounding=ROUND_CEILING)
    return float(doubled * HALF_HOUR)


def round_to_nearest_minor_unit(amount) -> int:
    """Redondea un monto a centavos enteros (mitad hacia arriba)."""
    return int(to_decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount, percent) -> int:
    """`percent` es un porcentaje literal (5 = 5%)."""
    return round_to_nearest_minor_unit(to_decimal(amount) * to_decimal(percent) / 100)


def fraction_of(amount, fraction) -> int:
    """`fraction` es una fracción 0..1 (0.05 = 5%)."""
    return round_to_nearest_minor_unit(to_decimal(amount) * to_decimal(fraction))
