"""
Pure helpers over broker position payloads.
"""
from typing import Any, Dict, Iterable, List, Optional

from dxtrade.domain.models import POSITION_METRIC_FIELDS, OrderType, PositionEffect, TimeInForce


def position_code(position: Dict[str, Any]) -> Optional[str]:
    key = position.get("positionKey")
    if isinstance(key, dict) and key.get("positionCode") is not None:
        return key["positionCode"]
    return position.get("positionCode")


def instrument_id(position: Dict[str, Any]) -> Optional[int]:
    key = position.get("positionKey")
    if isinstance(key, dict) and key.get("instrumentId") is not None:
        return key["instrumentId"]
    return position.get("instrumentId")


def merge_positions(
    positions: Iterable[Dict[str, Any]],
    metrics: Iterable[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Left-join position metrics onto positions by ``uid``.

    Positions without metrics get every metric field set to 0; metrics for
    unknown positions are dropped.
    """
    metrics_by_uid = {m.get("uid"): m for m in metrics or () if isinstance(m, dict)}
    merged = []
    for position in positions or ():
        metric = metrics_by_uid.get(position.get("uid"), {})
        row = dict(position)
        for field in POSITION_METRIC_FIELDS:
            row[field] = metric.get(field, 0)
        merged.append(row)
    return merged


def find_position(positions: Iterable[Dict[str, Any]], code: str) -> Optional[Dict[str, Any]]:
    for position in positions:
        if position_code(position) == code:
            return position
    return None


def build_close_order(position: Dict[str, Any]) -> Dict[str, Any]:
    """Market order that flattens a position: quantity is the exact negation."""
    code = position_code(position)
    return {
        "legs": [
            {
                "instrumentId": instrument_id(position),
                "positionCode": code,
                "positionEffect": PositionEffect.CLOSING.value,
                "ratioQuantity": 1,
                "symbol": code,
            }
        ],
        "limitPrice": 0,
        "orderType": OrderType.MARKET.value,
        "quantity": -position["quantity"],
        "timeInForce": TimeInForce.GTC.value,
    }
