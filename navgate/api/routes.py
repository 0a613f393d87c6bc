"""
Navigation API routes.

GET    /navigation                     filtered menu + loading flag
GET    /features/{feature_key}/access  single feature decision
POST   /features/refresh               re-fetch the tenant's enabled set
DELETE /features/cache                 mark cached state stale
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..navigation import node_to_dict
from ..schemas import FeatureAccessResponse
from ..session import NavigationSession
from .dependencies import get_navigation_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["navigation"])


class NavigationResponse(BaseModel):
    navigation_items: List[Dict[str, Any]]
    is_loading: bool
    debug_info: Dict[str, Any]


class RefreshResponse(BaseModel):
    refreshed: bool
    enabled_feature_keys: List[str]


@router.get("/navigation", response_model=NavigationResponse)
async def get_navigation(session: NavigationSession = Depends(get_navigation_session)):
    hybrid = session.use_hybrid_navigation()
    return NavigationResponse(
        navigation_items=[node_to_dict(node) for node in hybrid.navigation_items],
        is_loading=hybrid.is_loading,
        debug_info=hybrid.debug_info,
    )


@router.get("/features/{feature_key}/access", response_model=FeatureAccessResponse)
async def get_feature_access(
    feature_key: str,
    use_cache: bool = True,
    session: NavigationSession = Depends(get_navigation_session),
):
    decision = await session.access.check_feature_access(feature_key, use_cache=use_cache)
    return FeatureAccessResponse(
        feature_key=decision.feature_key,
        has_access=decision.has_access,
        reason=decision.reason,
        is_free_feature=decision.is_free_feature,
        show_upgrade=decision.show_upgrade,
    )


@router.post("/features/refresh", response_model=RefreshResponse)
async def refresh_features(session: NavigationSession = Depends(get_navigation_session)):
    enabled = await session.refresh_features()
    logger.info(
        "Feature refresh requested",
        extra={
            "tenant_id": session.principal.tenant_id if session.principal else None,
            "refreshed": enabled is not None,
        },
    )
    return RefreshResponse(
        refreshed=enabled is not None,
        enabled_feature_keys=sorted(enabled or ()),
    )


@router.delete("/features/cache", status_code=204)
async def clear_feature_cache(session: NavigationSession = Depends(get_navigation_session)):
    session.clear_cache()
