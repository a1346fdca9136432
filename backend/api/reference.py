"""Reference-data API endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_reference_service
from services.reference_data_service import ReferenceDataService

router = APIRouter(prefix="/api/reference", tags=["reference"])


@router.get("/{symbol}")
def get_reference(
    symbol: str,
    reference_service: ReferenceDataService = Depends(get_reference_service),
):
    """Serve a cached instrument.  404 if absent or expired."""
    instrument = reference_service.get_instrument(symbol)
    if instrument is None:
        raise HTTPException(status_code=404, detail=f"No cached reference data for {symbol.upper()}")
    return instrument
