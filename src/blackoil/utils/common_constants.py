"""
The module is intended to give access to a set of unified keywords, units etc.

To access the quantities, invoke bo.KEY.

All quantities are in SI units. Input given in field or metric units is converted by
multiplication, e.g. ``200 * bo.BAR`` or ``100 * bo.MILLIDARCY``.

"""

""" Units """
# SI Prefixes
NANO = 1e-9
MICRO = 1e-6
MILLI = 1e-3
CENTI = 1e-2
DECI = 1e-1
KILO = 1e3
MEGA = 1e6
GIGA = 1e9

# Time
SECOND = 1.0
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
YEAR = 365 * DAY

# Weight
KILOGRAM = 1.0
GRAM = 1e-3 * KILOGRAM

# Length
METER = 1.0
CENTIMETER = CENTI * METER
MILLIMETER = MILLI * METER
KILOMETER = KILO * METER
FEET = 0.3048 * METER

# Volume
CUBIC_METER = METER**3
STB = 0.158987294928 * CUBIC_METER

# Pressure related quantities
DARCY = 9.869233e-13
MILLIDARCY = MILLI * DARCY

PASCAL = 1.0
BAR = 100000 * PASCAL
ATMOSPHERIC_PRESSURE = 101325 * PASCAL
PSI = 6894.75729316836 * PASCAL

# Viscosity
POISE = 0.1 * PASCAL * SECOND
CENTIPOISE = CENTI * POISE

GRAVITY_ACCELERATION = 9.80665 * METER / SECOND**2

""" Global keywords

Canonical phase indices. Arrays that are indexed by phase in canonical order always
have length MAX_NUM_PHASES; arrays indexed by active phase use
``PhaseUsage.phase_pos``.
"""
WATER = 0
OIL = 1
GAS = 2
MAX_NUM_PHASES = 3

PHASE_NAMES = ("Water", "Oil", "Gas")
