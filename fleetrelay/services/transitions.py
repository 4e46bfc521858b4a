"""
Guarded state transitions

Every status change on a shared row (route, order, appointment) goes through
``attempt_transition``: one ``UPDATE ... WHERE id = :id AND <column> IN :expected``
whose row count tells the caller whether it won. Webhooks, the expiry sweep,
operator endpoints and the settlement path all race on the same rows, and the
loser of a race simply sees ``False``.
"""
import logging

from sqlalchemy import update

from fleetrelay import db

logger = logging.getLogger(__name__)


def attempt_transition(model, row_id, column, expected, values, conditions=(), commit=True):
    """
    Conditionally update one row

    Args:
        model: SQLAlchemy model class
        row_id (str): primary key of the row
        column (str): column guarded by ``expected``
        expected: allowed current value, or a tuple of them
        values (dict): column values to write when the guard holds
        conditions: extra SQL conditions that must also hold
        commit (bool): commit immediately; pass False to batch with other writes

    Returns:
        bool: True when exactly this call changed the row
    """
    if isinstance(expected, str):
        expected = (expected,)

    stmt = (
        update(model)
        .where(model.id == row_id, getattr(model, column).in_(expected), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    changed = result.rowcount == 1

    if commit:
        db.session.commit()
    else:
        # Keep identity-map copies from masking the new values
        instance = db.session.identity_map.get(db.session.identity_key(model, row_id))
        if instance is not None:
            db.session.expire(instance)

    if changed:
        logger.debug("%s %s: %s -> %s", model.__tablename__, row_id, column, values.get(column))
    return changed
