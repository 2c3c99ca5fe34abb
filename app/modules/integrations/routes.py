import logging

from fastapi import APIRouter, Depends, HTTPException
from app.modules.integrations.base import BaseIntegration, IntegrationError
from app.modules.integrations.manager import (
    IntegrationManager, UnknownActionError, UnknownIntegrationError, get_integration_manager
)
from app.modules.integrations.schemas import (
    IntegrationListResponse, IntegrationActionsResponse, IntegrationTestRequest, IntegrationExecuteRequest,
    IntegrationResult
)
from app.core.dependencies import get_current_user_id
from typing import Dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("", response_model=IntegrationListResponse)
async def list_integrations(
    current_user: Dict = Depends(get_current_user_id),
    manager: IntegrationManager = Depends(get_integration_manager)
):
    """Registered integration types with category and display name"""
    return IntegrationListResponse(integrations=manager.get_available_integrations())


@router.get("/{integration_type}/actions", response_model=IntegrationActionsResponse)
async def list_actions(
    integration_type: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: IntegrationManager = Depends(get_integration_manager)
):
    try:
        return IntegrationActionsResponse(type=integration_type, actions=manager.get_available_actions(integration_type))
    except UnknownIntegrationError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{integration_type}/test", response_model=IntegrationResult)
async def test_integration(
    integration_type: str,
    body: IntegrationTestRequest,
    current_user: Dict = Depends(get_current_user_id),
    manager: IntegrationManager = Depends(get_integration_manager)
):
    """Check credentials against the provider"""
    try:
        return manager.test_connection(integration_type, body.credentials)
    except UnknownIntegrationError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{integration_type}/execute", response_model=IntegrationResult)
async def execute_integration(
    integration_type: str,
    body: IntegrationExecuteRequest,
    current_user: Dict = Depends(get_current_user_id),
    manager: IntegrationManager = Depends(get_integration_manager)
):
    """Run one provider action with the given credentials and parameters"""
    try:
        return manager.execute(integration_type, body.action, body.config, body.params)
    except UnknownIntegrationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrationError as e:
        logger.warning(f"Integration {integration_type}.{body.action} failed for user {current_user['id']}: {e}")
        raise HTTPException(status_code=502 if e.status_code else 400, detail=BaseIntegration.format_error_response(e))
