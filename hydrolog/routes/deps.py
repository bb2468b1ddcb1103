"""Shared route dependencies."""
from fastapi import Depends, Header, HTTPException
from sqlalchemy.engine import Engine

from hydrolog.core.database import get_engine
from hydrolog.logbook.actors import Actor, Role
from hydrolog.logbook.clock import system_clock
from hydrolog.logbook.realtime import change_broker
from hydrolog.logbook.store import SqlSlotStore


def get_clock():
    """Wall clock used by the routes. Overridden in tests."""
    return system_clock


def get_actor(
    x_operator_id: str | None = Header(default=None),
    x_operator_role: str | None = Header(default=None),
) -> Actor:
    """
    The acting operator, as asserted by the authenticating proxy.

    Requests without an operator id are treated as anonymous viewers.
    """
    if not x_operator_id:
        return Actor("anonymous", Role.VIEWER)
    try:
        role = Role(x_operator_role or Role.OPERATOR.value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_operator_role}")
    return Actor(x_operator_id, role)


def get_store(engine: Engine = Depends(get_engine), clock=Depends(get_clock)) -> SqlSlotStore:
    return SqlSlotStore(engine, change_broker, clock)
