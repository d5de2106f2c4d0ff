import re

_DECIMAL_PRICE = re.compile(r'(?<![\d.,])(\d{1,4})\s?[.,]\s?(\d{2})(?![\d])')
_WHOLE_PRICE = re.compile(r'(?:(?<![\d.,])(\d{1,4})\s?(?:€|eur\b|\$))|(?:(?:€|\$)\s?(\d{1,4})(?![\d.,]))', re.IGNORECASE)


def normalize_ocr_text(value: str) -> str:
    return ' '.join((value or '').strip().split())


def extract_prices(text: str) -> list[str]:
    """Return the prices found in OCR text as normalized `units.cents` strings."""
    normalized = normalize_ocr_text(text)
    found: list[tuple[int, str]] = []
    for match in _DECIMAL_PRICE.finditer(normalized):
        found.append((match.start(), f'{int(match.group(1))}.{match.group(2)}'))
    taken = [m.span() for m in _DECIMAL_PRICE.finditer(normalized)]
    for match in _WHOLE_PRICE.finditer(normalized):
        if any(start <= match.start() < end for start, end in taken):
            continue
        units = match.group(1) or match.group(2)
        found.append((match.start(), f'{int(units)}.00'))
    return [price for _, price in sorted(found)]


def first_price(text: str) -> str | None:
    prices = extract_prices(text)
    return prices[0] if prices else None
