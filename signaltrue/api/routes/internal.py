# signaltrue/api/routes/internal.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Depends, HTTPException

from signaltrue.core.auth_deps import get_current_principal
from signaltrue.core.deps import get_scanner
from signaltrue.policies.rbac import ACTION_TOGGLE_SCANNER_SIMULATION, Principal, require_action
from signaltrue.schemas.attachments import ScannerSimulationRequest, ScannerSimulationResponse
from signaltrue.services.scanner import ContentScanner, SimulatedScanner

logger = logging.getLogger(__name__)

# Mounted only when settings.scanner_simulation_api_enabled is true.
router = APIRouter(prefix="/internal")


@router.get("/scanner/simulation", response_model=ScannerSimulationResponse)
async def get_scanner_simulation(
    principal: Principal = Depends(get_current_principal),
    scanner: ContentScanner = Depends(get_scanner),
):
    return {"scanner": scanner.name, "infected": bool(getattr(scanner, "force_infected", False))}


@router.post("/scanner/simulation", response_model=ScannerSimulationResponse)
async def set_scanner_simulation(
    body: ScannerSimulationRequest,
    principal: Principal = Depends(get_current_principal),
    scanner: ContentScanner = Depends(get_scanner),
):
    try:
        require_action(principal, ACTION_TOGGLE_SCANNER_SIMULATION)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    if not isinstance(scanner, SimulatedScanner):
        raise HTTPException(status_code=409, detail="Active scanner does not support simulation.")

    scanner.force_infected = body.infected
    logger.warning("[scanner] simulation flag set infected=%s by user=%s", body.infected, principal.user_id)
    return {"scanner": scanner.name, "infected": scanner.force_infected}
