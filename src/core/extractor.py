"""Heuristic content extraction (core domain).

Source channels post with very different templates (emoji, label wording,
currency placement), so extraction is an ordered list of independent rules.
The most specific patterns come first and the generic symbol-next-to-number
patterns come last; the first rule that yields a value wins.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import re
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from core.config import ChannelConfig
from core.models import Price, ProcessedContent, SourceMessage

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CURRENCY = "$"
EURO = "€"
CURRENCIES = (DEFAULT_CURRENCY, EURO)

_AMOUNT = r"(\d+(?:[.,]\d{1,2})?)"
_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")

NAME_BLACKLIST = re.compile(
    r"link|price|prezzo|seller|weidian|cnfans|spreadsheet|trusted|official|discord|instagram|telegram",
    re.IGNORECASE,
)
GLYPH_BLACKLIST = re.compile("[🔗📱💰💯🔍📊📈📋📌📎🏆✅]")


@dataclass(frozen=True)
class ExtractionRule(Generic[T]):
    """A pattern plus the function that turns its match into a value."""

    name: str
    pattern: re.Pattern
    extract: Callable[[re.Match], Optional[T]]


def apply_rules(text: str, rules: Iterable[ExtractionRule[T]]) -> Optional[T]:
    """Return the value of the first rule that matches and yields something."""

    for rule in rules:
        match = rule.pattern.search(text)
        if not match:
            continue
        value = rule.extract(match)
        if value is not None:
            return value
    return None


def _captured_name(match: re.Match) -> Optional[str]:
    name = match.group(1).strip()
    return name or None


def _name_rule(name: str, pattern: str) -> ExtractionRule[str]:
    return ExtractionRule(name, re.compile(pattern, re.IGNORECASE), _captured_name)


NAME_RULES: List[ExtractionRule[str]] = [
    _name_rule("article_label", r"Article\s*:+\s*([^$\n]+)"),
    _name_rule("article_label_tight", r"Article:+\s*([^$\n]+)"),
    _name_rule("article_label_spaced", r"Article\s+:\s*([^$\n]+)"),
    _name_rule("emoji_article_label", r"[^\w]*Article:+\s*([^$\n]+)"),
    _name_rule("magnifier_article_label", r"🔍\s*Article:+\s*([^$\n]+)"),
    _name_rule("magnifier_label", r"🔍\s*:\s*([^$\n]+)"),
    _name_rule("article_no_space", r"Article:([^$\n]+)"),
]


def _first_plain_line(text: str) -> Optional[str]:
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if NAME_BLACKLIST.search(line) or GLYPH_BLACKLIST.search(line):
            continue
        return stripped
    return None


def extract_item_name(text: Optional[str]) -> Optional[str]:
    """Return the best-effort item name, or None when nothing qualifies."""

    if not text:
        return None
    name = apply_rules(text, NAME_RULES)
    if name is not None:
        return name
    return _first_plain_line(text)


def _parse_amount(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    number = _NUMBER.search(raw)
    if not number:
        return None
    try:
        value = float(number.group(0).replace(",", ".", 1))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _currency_of(span: str) -> str:
    return EURO if EURO in span else DEFAULT_CURRENCY


def _symbol_price(match: re.Match) -> Optional[Price]:
    amount = _parse_amount(match.group(1))
    if amount is None:
        return None
    return Price(original=amount, currency=_currency_of(match.group(0)))


def _converted_price(match: re.Match) -> Optional[Price]:
    amount = _parse_amount(match.group(2))
    if amount is None:
        return None
    return Price(original=amount, currency=DEFAULT_CURRENCY)


def _price_rule(name: str, pattern: str) -> ExtractionRule[Price]:
    return ExtractionRule(name, re.compile(pattern, re.IGNORECASE), _symbol_price)


# "Price :CNY ¥ 179.00 ≈ $ 27.12" carries the converted amount; prefer it.
CONVERSION_RULE: ExtractionRule[Price] = ExtractionRule(
    "cny_to_usd",
    re.compile(rf"Price\s*:CNY\s*¥\s*{_AMOUNT}\s*(?:≈|=)\s*\$\s*{_AMOUNT}", re.IGNORECASE),
    _converted_price,
)

PRICE_RULES: List[ExtractionRule[Price]] = [
    _price_rule("label_optional_dollar", rf"Price\s*:?\s*\$?\s*{_AMOUNT}"),
    _price_rule("label_amount_dollar", rf"Price\s*:?\s*{_AMOUNT}\s*\$"),
    _price_rule("label_dollar_amount", rf"Price\s*:?\s*\$\s*{_AMOUNT}"),
    _price_rule("label_optional_euro", rf"Price\s*:?\s*€?\s*{_AMOUNT}"),
    _price_rule("label_amount_euro", rf"Price\s*:?\s*{_AMOUNT}\s*€"),
    _price_rule("label_euro_amount", rf"Price\s*:?\s*€\s*{_AMOUNT}"),
    _price_rule("dollar_amount", rf"\$\s*{_AMOUNT}"),
    _price_rule("amount_dollar", rf"{_AMOUNT}\s*\$"),
    _price_rule("euro_amount", rf"€\s*{_AMOUNT}"),
    _price_rule("amount_euro", rf"{_AMOUNT}\s*€"),
    _price_rule("moneybag_label", rf"💰\s*Price\s*:?\s*{_AMOUNT}"),
    _price_rule("moneybag_label_dollar", rf"💰\s*Price\s*:?\s*\$\s*{_AMOUNT}"),
    _price_rule("moneybag_label_amount_dollar", rf"💰\s*Price\s*:?\s*{_AMOUNT}\s*\$"),
    _price_rule("dollar_loose", rf"\$[^0-9]{{0,20}}{_AMOUNT}"),
    _price_rule("euro_loose", rf"€[^0-9]{{0,20}}{_AMOUNT}"),
]


def _custom_price(match: re.Match) -> Optional[Price]:
    # Channel patterns are free-form: use an "amount" group when named, the
    # first group when it is a whole number, else the first number matched.
    if "amount" in match.re.groupindex:
        raw = match.group("amount")
    elif match.re.groups and match.group(1) and _NUMBER.fullmatch(match.group(1).strip()):
        raw = match.group(1)
    else:
        raw = match.group(0)
    amount = _parse_amount(raw)
    if amount is None:
        return None
    return Price(original=amount, currency=_currency_of(match.group(0)))


def _custom_rule(custom_pattern: str) -> Optional[ExtractionRule[Price]]:
    try:
        compiled = re.compile(custom_pattern, re.IGNORECASE)
    except re.error as exc:
        LOGGER.warning("Ignoring invalid custom price pattern %r: %s", custom_pattern, exc)
        return None
    return ExtractionRule("custom", compiled, _custom_price)


def extract_price(text: Optional[str], custom_pattern: Optional[str] = None) -> Optional[Price]:
    """Return the first price found in ``text``, or None.

    Order: currency conversion rule, then the caller's pattern (if any and
    valid), then the built-in label/symbol rules.
    """

    if not text:
        return None

    rules: List[ExtractionRule[Price]] = [CONVERSION_RULE]
    if custom_pattern:
        custom = _custom_rule(custom_pattern)
        if custom is not None:
            rules.append(custom)
    rules.extend(PRICE_RULES)
    return apply_rules(text, rules)


def apply_markup(price: Optional[Price], percent: float) -> Optional[Price]:
    """Return ``price`` with ``percent`` markup applied, rounded to cents."""

    if price is None:
        return None
    final = round(price.original * (1 + percent / 100), 2)
    return Price(
        original=price.original,
        currency=price.currency,
        markup_percent=percent,
        final=final,
    )


def extract_content(
    message: SourceMessage,
    channel: ChannelConfig,
    default_markup: float,
) -> ProcessedContent:
    """Build ProcessedContent for a message under its channel's settings."""

    item_name = ""
    price = None
    if message.text and channel.include_text:
        item_name = extract_item_name(message.text) or ""
        if channel.include_price:
            markup = channel.markup_percent if channel.markup_percent is not None else default_markup
            price = apply_markup(extract_price(message.text, channel.price_pattern), markup)

    media = tuple(ref for ref in message.media if ref.kind in channel.media_kinds)
    dropped = len(message.media) - len(media)
    if dropped:
        LOGGER.debug(
            "Dropped %s media item(s) of disabled kinds from message %s/%s",
            dropped,
            message.source_channel_id,
            message.message_id,
        )

    return ProcessedContent(
        item_name=item_name,
        price=price,
        media=media,
        group_id=message.group_id,
    )
