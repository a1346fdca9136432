"""Connection API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from database import get_db
from schemas import ConnectionResponse
from services.connection_state import (
    ConnectionNotFoundError,
    ConnectionStateMachine,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["connections"])


@router.get("/users/{user_id}/connections", response_model=list[ConnectionResponse])
def list_connections(user_id: str, db: Session = Depends(get_db)):
    """List a user's connections with their accounts."""
    return ConnectionStateMachine.list_for_user(db, user_id)


@router.delete("/connections/{authorization_id}", status_code=204)
def disconnect(authorization_id: str, db: Session = Depends(get_db)):
    """User-initiated disconnect: removes the connection and its accounts."""
    if not ConnectionStateMachine.delete(db, authorization_id):
        raise HTTPException(status_code=404, detail=f"Connection not found: {authorization_id}")
    db.commit()
    return Response(status_code=204)


@router.post("/connections/{authorization_id}/disable", response_model=ConnectionResponse)
def disable_connection(authorization_id: str, db: Session = Depends(get_db)):
    """Suspend a connection so scheduled refreshes skip it."""
    return _transition(db, authorization_id, ConnectionStateMachine.suspend)


@router.post("/connections/{authorization_id}/enable", response_model=ConnectionResponse)
def enable_connection(authorization_id: str, db: Session = Depends(get_db)):
    """Lift a suspension; the next successful refresh re-activates it."""
    return _transition(db, authorization_id, ConnectionStateMachine.resume)


def _transition(db: Session, authorization_id: str, action):
    try:
        connection = action(db, authorization_id)
    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Connection not found: {authorization_id}")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(connection)
    return connection
