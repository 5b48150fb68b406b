"""Manager router: views, permissionless rebalance, owner parameter updates."""

from fastapi import APIRouter, HTTPException, Request

from yieldrouter.api.auth import OwnerPrincipal
from yieldrouter.api.schemas import ManagerSummary, ParameterUpdateRequest, RebalanceResponse
from yieldrouter.core.access import ANONYMOUS, Principal
from yieldrouter.core.types import BackendInfo, ManagerParameters, RebalanceDecision
from yieldrouter.logging import get_logger
from yieldrouter.manager import YieldManager

logger = get_logger(__name__)

router = APIRouter(prefix="/manager", tags=["manager"])


def _get_manager(request: Request) -> YieldManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=500, detail="Manager not initialized")
    return manager


@router.get("/summary", response_model=ManagerSummary)
async def get_summary(request: Request) -> ManagerSummary:
    """Aggregate balances and target weights."""
    manager = _get_manager(request)
    return ManagerSummary(
        total_assets=await manager.total_assets(),
        backend_count=manager.backend_count(),
        idle_balance=manager.idle_balance,
        target_allocations=manager.target_allocations(),
    )


@router.get("/backends", response_model=list[BackendInfo])
async def get_backends(request: Request) -> list[BackendInfo]:
    manager = _get_manager(request)
    return await manager.all_backends_info()


@router.get("/allocations")
async def get_allocations(request: Request) -> dict[str, int]:
    manager = _get_manager(request)
    return manager.target_allocations()


@router.get("/parameters", response_model=ManagerParameters)
async def get_parameters(request: Request) -> ManagerParameters:
    manager = _get_manager(request)
    return manager.parameters


@router.get("/rebalance/decision", response_model=RebalanceDecision)
async def get_rebalance_decision(request: Request) -> RebalanceDecision:
    """Profitability estimate without executing anything."""
    manager = _get_manager(request)
    return await manager.evaluate_rebalance()


@router.post("/rebalance", response_model=RebalanceResponse)
async def post_rebalance(request: Request) -> RebalanceResponse:
    """Execute a rebalance if the profitability gate approves."""
    manager = _get_manager(request)
    moves = await manager.rebalance(ANONYMOUS)
    logger.info(f"Rebalance via API executed {len(moves)} moves")
    return RebalanceResponse(moves=moves)


@router.post("/parameters", response_model=ManagerParameters)
async def post_parameters(
    body: ParameterUpdateRequest,
    request: Request,
    owner: Principal = OwnerPrincipal,
) -> ManagerParameters:
    """Apply every given parameter in one operation; nothing changes if any is invalid."""
    manager = _get_manager(request)
    return await manager.update_parameters(owner, **body.model_dump(exclude_none=True))
