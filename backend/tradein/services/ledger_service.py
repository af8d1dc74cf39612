# Overview: Service-layer operations for the stock movement log; the only writer of item custody state.

from __future__ import annotations

from enum import Enum
from typing import Iterable, NamedTuple, Optional

from ..extensions import db
from ..models import InventoryItem, StockMovement
from ..time_utils import utcnow
"""
Custody Ledger Invariants (authoritative)

- StockMovement rows are append-only. After insert the only permitted write
  is clearing is_pending; a row may only be deleted while still pending.
- InventoryItem.current_location / current_showroom_id / status are a cached
  projection of the item's movements, replayed in (created_at, id) order.
- record_movement() is the single write path for those snapshot fields. It
  appends the movement (pending), applies the same projection to the
  snapshot, then clears the pending flag, all inside the caller's DB
  transaction. A pending row that survives a commit is a partial write and
  is detected by verify_item() / resolved by repair_item().
- project() is shared by the write path and replay, so both agree by
  construction.
"""


class Location(str, Enum):
    SERVICE_STATION = "service_station"
    SHOWROOM = "showroom"
    WAREHOUSE = "warehouse"


class InventoryStatus(str, Enum):
    IN_STOCK = "in_stock"
    IN_REPAIR = "in_repair"
    SOLD = "sold"
    TRANSFERRED = "transferred"
    RETURNED = "returned"


class MovementType(str, Enum):
    STOCK_IN = "stock_in"
    TRANSFER = "transfer"
    STOCK_OUT = "stock_out"


LOCATIONS = frozenset(loc.value for loc in Location)
ACTIVE_STATUSES = frozenset({InventoryStatus.IN_STOCK.value, InventoryStatus.IN_REPAIR.value})


class LedgerReplayError(ValueError):
    """A movement cannot follow the state before it."""


class LedgerState(NamedTuple):
    location: Optional[str]
    showroom_id: Optional[str]
    status: Optional[str]


EMPTY_STATE = LedgerState(None, None, None)


def snapshot_of(item: InventoryItem) -> LedgerState:
    return LedgerState(item.current_location, item.current_showroom_id, item.status)


def project(state: LedgerState, movement: StockMovement) -> LedgerState:
    """
    State after `movement`, given the state before it.

    Raises LedgerReplayError when the movement is not a legal successor
    (e.g. a transfer whose from_location is not where the unit was).
    """
    mtype = movement.type
    if mtype == MovementType.STOCK_IN.value:
        if state != EMPTY_STATE:
            raise LedgerReplayError(f"stock_in after existing custody ({state.location}, {state.status})")
        return LedgerState(movement.to_location, movement.to_showroom_id, movement.resulting_status)

    if state.status != InventoryStatus.IN_STOCK.value:
        raise LedgerReplayError(f"{mtype} while status is {state.status}")
    if movement.from_location != state.location:
        raise LedgerReplayError(
            f"{mtype} from {movement.from_location} but unit was at {state.location}"
        )

    if mtype == MovementType.TRANSFER.value:
        return LedgerState(movement.to_location, movement.to_showroom_id, movement.resulting_status)
    if mtype == MovementType.STOCK_OUT.value:
        # Location is kept as the last place the unit left from
        return LedgerState(state.location, state.showroom_id, movement.resulting_status)
    raise LedgerReplayError(f"unknown movement type {mtype!r}")


def replay_movements(movements: Iterable[StockMovement]) -> LedgerState:
    state = EMPTY_STATE
    for movement in movements:
        state = project(state, movement)
    return state


def get_item_movements(inventory_id: int, *, include_pending: bool = True) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter(StockMovement.inventory_id == inventory_id)
    if not include_pending:
        q = q.filter(StockMovement.is_pending.is_(False))
    return q.order_by(StockMovement.created_at, StockMovement.id).all()


def _write_snapshot(item: InventoryItem, state: LedgerState) -> None:
    item.current_location = state.location
    item.current_showroom_id = state.showroom_id
    item.status = state.status


def record_movement(
    item: InventoryItem,
    *,
    movement_type: MovementType,
    to_location: Optional[str],
    to_showroom_id: Optional[str],
    resulting_status: str,
    reason: str,
    performed_by: str,
    performed_by_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> StockMovement:
    """
    Append one movement and move the snapshot with it.

    For stock_in the item must be new (not yet flushed); it is inserted with
    the projected state so the movement can reference its id. For transfer and
    stock_out the movement goes in first as pending, then the snapshot, then
    the pending flag is cleared.

    Nothing is committed here; the caller owns the transaction.
    """
    is_stock_in = movement_type == MovementType.STOCK_IN
    prior = EMPTY_STATE if is_stock_in else snapshot_of(item)

    movement = StockMovement(
        order_id=item.order_id,
        serial_number=item.serial_number,
        type=movement_type.value,
        from_location=prior.location,
        to_location=to_location,
        to_showroom_id=to_showroom_id,
        resulting_status=resulting_status,
        reason=reason,
        performed_by=performed_by,
        performed_by_name=performed_by_name,
        notes=notes,
        is_pending=True,
        created_at=utcnow(),
    )
    new_state = project(prior, movement)

    if is_stock_in:
        if item.id is not None:
            raise LedgerReplayError(f"Inventory item {item.id} already has custody history")
        _write_snapshot(item, new_state)
        db.session.add(item)
        db.session.flush()
        movement.inventory_id = item.id
        db.session.add(movement)
        db.session.flush()
    else:
        movement.inventory_id = item.id
        db.session.add(movement)
        db.session.flush()
        _write_snapshot(item, new_state)
        db.session.flush()

    movement.is_pending = False
    db.session.flush()
    return movement


def verify_item(item: InventoryItem) -> list[str]:
    """
    Compare the snapshot with a replay of committed movements.

    Returns human-readable discrepancies; an empty list means consistent.
    """
    problems = []
    movements = get_item_movements(item.id)
    pending = [m for m in movements if m.is_pending]
    for m in pending:
        problems.append(f"movement {m.id} ({m.type}) is still pending")

    if not movements:
        problems.append("item has no movements")
        return problems

    try:
        replayed = replay_movements(m for m in movements if not m.is_pending)
    except LedgerReplayError as exc:
        problems.append(f"movement log does not replay: {exc}")
        return problems

    snapshot = snapshot_of(item)
    if replayed != snapshot and not pending:
        problems.append(f"snapshot {tuple(snapshot)} differs from replay {tuple(replayed)}")
    return problems


def repair_item(item: InventoryItem) -> list[str]:
    """
    Resolve pending movements and realign the snapshot with the log.

    - A pending movement whose effect is already in the snapshot is completed
      (flag cleared).
    - A pending movement whose effect is absent is rolled back (deleted).
    - If the snapshot still disagrees with the committed log, it is rewritten
      from the replay.

    Returns the actions taken. Caller commits.
    """
    actions = []
    movements = get_item_movements(item.id)
    committed = [m for m in movements if not m.is_pending]
    state = replay_movements(committed)
    snapshot = snapshot_of(item)

    for movement in (m for m in movements if m.is_pending):
        try:
            candidate = project(state, movement)
        except LedgerReplayError:
            candidate = None
        if candidate is not None and candidate == snapshot:
            movement.is_pending = False
            state = candidate
            actions.append(f"completed movement {movement.id} ({movement.type})")
        else:
            db.session.delete(movement)
            actions.append(f"rolled back movement {movement.id} ({movement.type})")
    db.session.flush()

    if state == EMPTY_STATE:
        actions.append("no committed movements left; snapshot kept for manual review")
    elif state != snapshot:
        _write_snapshot(item, state)
        db.session.flush()
        actions.append(f"snapshot rewritten to {tuple(state)}")
    return actions
