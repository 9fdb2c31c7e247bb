"""
Execution module.

Correlates REST-issued trading actions with their asynchronous outcome on
the stream.

    submit_order ──► order_listener (attached first) ──► POST order
                          │
                          ├── MESSAGE (trade log)  ─┐
                          └── ORDERS               ─┴─► one future, settled once

    close_position_by_code ──► "stream": order_listener(position_code)
                           └─► "poll":   re-fetch until the position is gone
"""

from dxtrade.execution.order_tracker import OrderListener, latest_order_entry, order_listener
from dxtrade.execution.position_tracker import close_all_positions, close_position_by_code
