"""Feature API Routes: the votable features of a session."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core.dependencies import CurrentUserDep, SessionDep
from ..integrations.azure_devops import AzureDevOpsClient, AzureDevOpsError
from ..schemas import (
    FeatureCreate,
    FeatureImportRequest,
    FeatureResponse,
    FeatureUpdate,
    ImportSummaryResponse,
    MessageResponse,
    ResetResponse,
)
from ..services import (
    ExternalFeature,
    FeatureCatalog,
    ImportFailed,
    NotFound,
    VoteLedger,
)
from .sessions import SessionServiceDep, load_managed_session, load_visible_session

router = APIRouter(prefix="/sessions/{session_id}/features", tags=["features"])


def get_feature_catalog(session: SessionDep) -> FeatureCatalog:
    return FeatureCatalog(session)


FeatureCatalogDep = Annotated[FeatureCatalog, Depends(get_feature_catalog)]


async def _feature_in_session(catalog: FeatureCatalog, session_id: UUID, feature_id: UUID):
    feature = await catalog.get(feature_id)
    if feature.session_id != session_id:
        raise NotFound("feature", feature_id)
    return feature


@router.get("", response_model=list[FeatureResponse])
async def list_features(
    session_id: UUID,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    """Features newest first, each with its vote total and voter roster."""
    await load_visible_session(sessions, current_user, session_id)
    return await catalog.list_features(session_id)


@router.post("", response_model=FeatureResponse, status_code=status.HTTP_201_CREATED)
async def create_feature(
    session_id: UUID,
    request: FeatureCreate,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    await load_managed_session(sessions, current_user, session_id)
    feature = await catalog.create(session_id, **request.model_dump())
    return await catalog.get_view(feature.id)


@router.patch("/{feature_id}", response_model=FeatureResponse)
async def update_feature(
    session_id: UUID,
    feature_id: UUID,
    request: FeatureUpdate,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    await load_managed_session(sessions, current_user, session_id)
    await _feature_in_session(catalog, session_id, feature_id)
    await catalog.update(feature_id, request.model_dump(exclude_unset=True))
    return await catalog.get_view(feature_id)


@router.delete("/{feature_id}", response_model=MessageResponse)
async def delete_feature(
    session_id: UUID,
    feature_id: UUID,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    """Delete a feature together with every vote cast on it."""
    await load_managed_session(sessions, current_user, session_id)
    feature = await _feature_in_session(catalog, session_id, feature_id)
    title = feature.title
    await catalog.delete(feature_id)
    return MessageResponse(message=f"Deleted feature {title}")


@router.post("/{feature_id}/reset-votes", response_model=ResetResponse)
async def reset_feature_votes(
    session_id: UUID,
    feature_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    await load_managed_session(sessions, current_user, session_id)
    await _feature_in_session(catalog, session_id, feature_id)
    removed = await VoteLedger(session).reset_feature(feature_id)
    return ResetResponse(removed=removed)


@router.post("/import", response_model=ImportSummaryResponse)
async def import_features(
    session_id: UUID,
    request: FeatureImportRequest,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    catalog: FeatureCatalogDep,
):
    """Import features from Azure DevOps, or from the supplied work items.

    Matching features (by external id) get fresh metadata and keep their
    votes; the rest are added. ``replace_all`` starts from an empty list.
    """
    await load_managed_session(sessions, current_user, session_id)
    if request.features is not None:
        incoming = [ExternalFeature(**item.model_dump()) for item in request.features]
        summary = await catalog.import_batch(
            session_id, incoming, replace_all=request.replace_all
        )
    else:
        try:
            client = AzureDevOpsClient.from_settings(
                states=request.states, area_path=request.area_path
            )
        except AzureDevOpsError as e:
            raise ImportFailed(str(e)) from e
        summary = await catalog.import_from_tracker(
            session_id, client, replace_all=request.replace_all
        )
    return ImportSummaryResponse(
        updated=summary.updated, created=summary.created, removed=summary.removed
    )
