"""
Bindex Constants

Protocol constants (fixed point, ticks, bin kinds, key bounds) and the
logger settings read from ``.env``.
"""
import ast

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT
# =============================================================================
_env = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# FIXED-POINT ARITHMETIC
# ==================================================================================
FIXED_POINT_DECIMALS = 18
ONE = 10 ** FIXED_POINT_DECIMALS  # 1.0 in 18-decimal fixed point

# Minimal tick ratio: adjacent bins differ by TICK_BASE ** tick_spacing in price
TICK_BASE = '1.0001'


# ==================================================================================
# ADDRESSES
# ==================================================================================
# Recipient sentinel: proceeds stay in the router for a later call in the batch
ZERO_ADDRESS = '0x' + '0' * 40
ADDRESS_SIZE = 20  # bytes


# ==================================================================================
# BIN KINDS
# ==================================================================================
BIN_KIND_STATIC = 0
BIN_KIND_RIGHT = 1
BIN_KIND_LEFT = 2
BIN_KIND_BOTH = 3
BIN_KINDS = (BIN_KIND_STATIC, BIN_KIND_RIGHT, BIN_KIND_LEFT, BIN_KIND_BOTH)
# Kinds that follow the price upward on migration
MOBILE_UP_KINDS = (BIN_KIND_RIGHT, BIN_KIND_BOTH)


# ==================================================================================
# POOL KEY BOUNDS (overridable through bindex.config)
# ==================================================================================
MAX_FEE = ONE - 1               # fee is strictly below 100%
MIN_TICK_SPACING = 1
MAX_TICK_SPACING = 10_000
MIN_LOOKBACK = 60               # seconds
MAX_LOOKBACK = 30 * 24 * 3600   # 30 days
ORACLE_MAX_OBSERVATIONS = 8640



# ==================================================================================
# LOGGER SETTINGS (.env)
# ==================================================================================
class _Setting:
    """Mixin remembering the built-in default of a ``.env`` setting."""

    _default = None

    def default(self):
        return self._default


class ConfigString(_Setting, str):
    def __new__(cls, value, default):
        setting = super().__new__(cls, value)
        setting._default = default
        return setting


class ConfigBool(_Setting, int):
    """Boolean setting; ``int`` based since ``bool`` cannot be subclassed."""

    def __new__(cls, value, default):
        setting = super().__new__(cls, bool(value))
        setting._default = default
        return setting

    def __repr__(self):
        return repr(bool(self))

    __str__ = __repr__

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


def parse_bool(v):
    """
    Map the literals ``true`` / ``false`` (case and surrounding blanks ignored)
    to ``bool``; anything else is returned untouched.
    """
    if isinstance(v, str) and v.strip().lower() in ("true", "false"):
        return ast.literal_eval(v.strip().capitalize())
    return v


def _setting(key):
    builtin = LOGGER_DEFAULTS[key]
    raw = _env.get(key)
    chosen = builtin if raw is None else raw
    if isinstance(parse_bool(chosen), bool):
        return ConfigBool(parse_bool(chosen), parse_bool(builtin))
    return ConfigString(chosen, parse_bool(builtin))


LOG_LEVEL = _setting('LOG_LEVEL')
LOG_FORMAT = _setting('LOG_FORMAT')
LOG_DATE_FORMAT = _setting('LOG_DATE_FORMAT')
LOG_CONSOLE_HIGHLIGHTING = _setting('LOG_CONSOLE_HIGHLIGHTING')
LOG_FILE_OUTPUT = _setting('LOG_FILE_OUTPUT')
