import re

COUNTRY_PREFIX = '55'

_NON_DIGITS = re.compile(r'\D')

def normalize_phone(phone) -> str:
    """Return the phone as international digits (5511999999999).

    Brazilian numbers are assumed: 11 digits (area code + 9 + number) get the
    country prefix, a 12-digit number already carrying it is kept, and
    anything shorter than 10 digits is returned untouched. Never raises; an
    empty result means the number is unusable.
    """
    digits = _NON_DIGITS.sub('', phone or '')
    if not digits:
        return ''
    if len(digits) == 11 and not digits.startswith('0'):
        return COUNTRY_PREFIX + digits
    if len(digits) == 12 and digits.startswith(COUNTRY_PREFIX):
        return digits
    if len(digits) >= 10:
        return COUNTRY_PREFIX + digits
    return digits

def redact_phone(phone) -> str:
    digits = _NON_DIGITS.sub('', phone or '')
    return f"{digits[-4:]}****" if digits else '****'
