"""
Ticker Codec - Inbound Frame Validation

Turns raw socket/HTTP payloads into typed values. Two shapes are accepted:

1. A JSON array of ticker objects:
       [{"symbol": "BTCUSDT", "price": 67500, "change_24h": 2.5,
         "volume_24h": 2.8e10, "high_24h": 68000, "low_24h": 66000}]
   camelCase keys (``change24h``, ``volume24h`` ...) are accepted as well.

2. A control acknowledgment object:
       {"type": "subscribed", "symbols": ["BTCUSDT"]}

Anything else is malformed. ``decode`` never raises: schema violations are
raised internally as FrameDecodeError and returned as MalformedFrame at the
boundary, so one bad frame cannot take down the connection loop.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union
import json
import math

from ticker_feed.config.constants import (
    CONTROL_FRAME_TYPES,
    SUBSCRIBE_COMMAND,
    UNSUBSCRIBE_COMMAND,
)
from ticker_feed.core.models import Ticker
from ticker_feed.utils.exceptions import FrameDecodeError, InvalidResponseError


# field -> accepted keys, in lookup order
_TICKER_FIELDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('price', ('price',)),
    ('change_24h', ('change_24h', 'change24h')),
    ('volume_24h', ('volume_24h', 'volume24h')),
    ('high_24h', ('high_24h', 'high24h')),
    ('low_24h', ('low_24h', 'low24h')),
)


@dataclass(frozen=True)
class TickerFrame:
    """Data frame: one or more ticker records"""
    tickers: Tuple[Ticker, ...]


@dataclass(frozen=True)
class ControlFrame:
    """Subscription acknowledgment or keepalive, ignored by the data path"""
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MalformedFrame:
    """Frame that matched neither shape; carries the reason for diagnostics"""
    reason: str
    raw: Any = None


DecodedFrame = Union[TickerFrame, ControlFrame, MalformedFrame]


def normalize_symbol(symbol: Any) -> str:
    """
    Canonical symbol form: stripped and uppercased.

    Raises:
        FrameDecodeError: If symbol is not a non-empty string
    """
    if not isinstance(symbol, str):
        raise FrameDecodeError(
            f"Symbol must be string, got {type(symbol).__name__}",
            error_code='INVALID_SYMBOL',
            field='symbol'
        )
    canonical = symbol.strip().upper()
    if not canonical:
        raise FrameDecodeError("Symbol is empty", error_code='INVALID_SYMBOL', field='symbol')
    return canonical


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Canonicalise a symbol collection, keeping first-seen order and dropping repeats"""
    if isinstance(symbols, str):
        symbols = [symbols]
    seen: Dict[str, None] = {}
    for symbol in symbols:
        seen.setdefault(normalize_symbol(symbol), None)
    return list(seen)


def _number(record: Mapping[str, Any], name: str, keys: Tuple[str, ...]) -> float:
    for key in keys:
        if key in record:
            value = record[key]
            break
    else:
        raise FrameDecodeError(
            f"Missing required field '{name}'",
            error_code='MISSING_FIELD',
            field=name
        )

    # bool is an int subclass but never a valid quantity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FrameDecodeError(
            f"Field '{name}' must be numeric, got {type(value).__name__}",
            error_code='NON_NUMERIC_FIELD',
            field=name
        )
    try:
        number = float(value)
    except OverflowError as e:
        # JSON integers are unbounded
        raise FrameDecodeError(
            f"Field '{name}' is out of range",
            error_code='NON_FINITE_FIELD',
            field=name,
            original_error=e
        ) from e
    if not math.isfinite(number):
        raise FrameDecodeError(
            f"Field '{name}' is not finite",
            error_code='NON_FINITE_FIELD',
            field=name
        )
    return number


def parse_ticker(record: Any) -> Ticker:
    """
    Validate one ticker object.

    Raises:
        FrameDecodeError: On wrong type, missing field, non-numeric or negative price
    """
    if not isinstance(record, Mapping):
        raise FrameDecodeError(
            f"Ticker must be an object, got {type(record).__name__}",
            error_code='INVALID_TICKER'
        )
    if 'symbol' not in record:
        raise FrameDecodeError("Missing required field 'symbol'", error_code='MISSING_FIELD', field='symbol')

    symbol = normalize_symbol(record['symbol'])
    values = {name: _number(record, name, keys) for name, keys in _TICKER_FIELDS}

    if values['price'] < 0:
        raise FrameDecodeError(
            f"Negative price for {symbol}",
            error_code='NEGATIVE_PRICE',
            field='price',
            details={'symbol': symbol, 'price': values['price']}
        )

    return Ticker(symbol=symbol, **values)


def _parse_payload(payload: Any) -> DecodedFrame:
    if isinstance(payload, list):
        return TickerFrame(tickers=tuple(parse_ticker(item) for item in payload))

    if isinstance(payload, dict):
        frame_type = payload.get('type')
        if isinstance(frame_type, str) and frame_type in CONTROL_FRAME_TYPES:
            return ControlFrame(type=frame_type, payload=payload)
        raise FrameDecodeError(
            f"Unknown object frame type: {frame_type!r}",
            error_code='UNKNOWN_FRAME_TYPE'
        )

    raise FrameDecodeError(
        f"Frame must be an array or object, got {type(payload).__name__}",
        error_code='INVALID_FRAME_SHAPE'
    )


def decode(raw: Union[str, bytes, bytearray]) -> DecodedFrame:
    """
    Decode one inbound frame.

    Args:
        raw: Frame text (bytes are decoded as UTF-8)

    Returns:
        TickerFrame, ControlFrame, or MalformedFrame. Never raises.
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            text = bytes(raw).decode('utf-8')
        elif isinstance(raw, str):
            text = raw
        else:
            raise FrameDecodeError(
                f"Frame must be text, got {type(raw).__name__}",
                error_code='INVALID_FRAME_TYPE'
            )
        return _parse_payload(json.loads(text))
    except FrameDecodeError as e:
        return MalformedFrame(reason=e.message, raw=raw)
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        # json.JSONDecodeError is a ValueError
        return MalformedFrame(reason=f"Invalid JSON: {e}", raw=raw)


def decode_tickers(payload: Any) -> List[Ticker]:
    """
    Strict decoder for polling responses.

    Args:
        payload: Parsed JSON body or raw response text

    Raises:
        InvalidResponseError: If the payload is not a valid ticker list
    """
    try:
        if isinstance(payload, (str, bytes, bytearray)):
            payload = json.loads(payload)
        if not isinstance(payload, list):
            raise FrameDecodeError(
                f"Expected ticker list, got {type(payload).__name__}",
                error_code='INVALID_FRAME_SHAPE'
            )
        return [parse_ticker(item) for item in payload]
    except (FrameDecodeError, ValueError) as e:
        raise InvalidResponseError(
            f"Invalid ticker response: {e}",
            response_data=payload if isinstance(payload, (list, dict)) else None,
            original_error=e
        ) from e


def encode_command(action: str, symbols: Iterable[str]) -> Dict[str, Any]:
    """
    Build a subscribe/unsubscribe command.

    Example:
        >>> encode_command('subscribe', ['btcusdt'])
        {'type': 'subscribe', 'symbols': ['BTCUSDT']}
    """
    if action not in (SUBSCRIBE_COMMAND, UNSUBSCRIBE_COMMAND):
        raise ValueError(f"Unknown command: {action}")
    return {'type': action, 'symbols': normalize_symbols(symbols)}
