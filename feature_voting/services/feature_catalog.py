"""
Feature Catalog: the votable features of a session.

Features are entered by hand or imported from Azure DevOps. Re-importing
refreshes the metadata of features matched by ``external_id`` but never
touches their votes; votes are only removed by an explicit reset, by
deleting the feature, or by a replace-all import that swaps out the whole
feature list.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Feature, VotingSession
from .errors import ImportFailed, InvalidRequest, NotFound, PersistenceFailure
from .vote_ledger import VoteLedger, VoterInfo

logger = logging.getLogger(__name__)

# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class ExternalFeature:
    """A work item as supplied by the external tracker."""
    external_id: str
    title: str
    url: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None

    @property
    def resolved_epic(self) -> str | None:
        """Explicit epic, else the first tag."""
        if self.epic:
            return self.epic
        return self.tags[0] if self.tags else None


@dataclass
class FeatureView:
    """A feature with its tally and voter roster attached."""
    id: UUID | None
    session_id: UUID
    title: str
    description: str = ""
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None
    tags: list[str] | None = None
    external_id: str | None = None
    external_url: str | None = None
    votes: int = 0
    voters: list[VoterInfo] = field(default_factory=list)
    created_at: datetime | None = None

    @classmethod
    def from_model(
        cls,
        feature: Feature,
        votes: int = 0,
        voters: list[VoterInfo] | None = None,
    ) -> "FeatureView":
        return cls(
            id=feature.id,
            session_id=feature.session_id,
            title=feature.title,
            description=feature.description,
            epic=feature.epic,
            state=feature.state,
            area_path=feature.area_path,
            tags=list(feature.tags) if feature.tags else None,
            external_id=feature.external_id,
            external_url=feature.external_url,
            votes=votes,
            voters=list(voters or []),
            created_at=feature.created_at,
        )


@dataclass
class ImportSummary:
    updated: int = 0
    created: int = 0
    removed: int = 0


class FeatureSource(Protocol):
    """Anything that can supply work items to import."""

    async def fetch_features(self) -> list[ExternalFeature]: ...


EDITABLE_FIELDS = frozenset(
    {"title", "description", "epic", "state", "area_path", "tags", "external_id", "external_url"}
)


# =============================================================================
# MERGE RULE
# =============================================================================


def _dedupe(incoming: Sequence[ExternalFeature]) -> list[ExternalFeature]:
    """Keep the last occurrence of each external id, in first-seen order."""
    latest: dict[str, ExternalFeature] = {}
    for item in incoming:
        latest[item.external_id] = item
    return list(latest.values())


def merge_imported(
    existing: Sequence[FeatureView],
    incoming: Sequence[ExternalFeature],
    session_id: UUID | None = None,
) -> list[FeatureView]:
    """Merge an import batch into the current feature list.

    - incoming items matching an existing ``external_id`` replace title,
      description, epic, state, area path, tags and url, keeping that
      feature's votes and voters
    - unmatched incoming items are appended as new features
    - features without an ``external_id`` follow the merged set unchanged
    """
    imported = [f for f in existing if f.external_id]
    local = [f for f in existing if not f.external_id]
    if session_id is None and existing:
        session_id = existing[0].session_id

    by_external_id = {f.external_id: i for i, f in enumerate(imported)}
    merged = list(imported)
    added: list[FeatureView] = []

    for item in _dedupe(incoming):
        index = by_external_id.get(item.external_id)
        if index is not None:
            merged[index] = replace(
                merged[index],
                title=item.title,
                description=item.description or "",
                epic=item.resolved_epic,
                state=item.state,
                area_path=item.area_path,
                tags=list(item.tags) or None,
                external_url=item.url,
            )
        else:
            added.append(
                FeatureView(
                    id=None,
                    session_id=session_id,
                    title=item.title,
                    description=item.description or "",
                    epic=item.resolved_epic,
                    state=item.state,
                    area_path=item.area_path,
                    tags=list(item.tags) or None,
                    external_id=item.external_id,
                    external_url=item.url,
                )
            )

    return merged + added + local


# =============================================================================
# CATALOG
# =============================================================================


class FeatureCatalog:
    """CRUD and import for the features of a session."""

    def __init__(self, session: AsyncSession, ledger: VoteLedger | None = None):
        self.session = session
        self.ledger = ledger or VoteLedger(session)

    async def _require_session(self, session_id: UUID) -> VotingSession:
        voting_session = await self.session.get(VotingSession, session_id)
        if voting_session is None:
            raise NotFound("voting session", session_id)
        return voting_session

    async def get(self, feature_id: UUID) -> Feature:
        feature = await self.session.get(Feature, feature_id)
        if feature is None:
            raise NotFound("feature", feature_id)
        return feature

    async def get_view(self, feature_id: UUID) -> FeatureView:
        feature = await self.get(feature_id)
        return FeatureView.from_model(
            feature,
            votes=await self.ledger.total_votes(feature.id),
            voters=await self.ledger.voters(feature.id),
        )

    async def list_features(self, session_id: UUID) -> list[FeatureView]:
        """Features of a session, newest first, with tallies attached."""
        await self._require_session(session_id)
        result = await self.session.execute(
            select(Feature)
            .where(Feature.session_id == session_id)
            .order_by(Feature.created_at.desc(), Feature.title)
            .execution_options(populate_existing=True)
        )
        features = result.scalars().all()
        tallies = await self.ledger.tallies(session_id)
        rosters = await self.ledger.voters_by_feature([f.id for f in features])
        return [
            FeatureView.from_model(
                f, votes=tallies.get(f.id, 0), voters=rosters.get(f.id, [])
            )
            for f in features
        ]

    async def create(self, session_id: UUID, **fields: Any) -> Feature:
        await self._require_session(session_id)
        values = self._clean(fields)
        if not values.get("title"):
            raise InvalidRequest("Feature title is required")

        feature = Feature(session_id=session_id, **values)
        self.session.add(feature)
        await self._flush("create feature")
        logger.info(f"Created feature {feature.id} in session {session_id}")
        return feature

    async def update(self, feature_id: UUID, changes: Mapping[str, Any]) -> Feature:
        feature = await self.get(feature_id)
        values = self._clean(changes)
        if "title" in values and not values["title"]:
            raise InvalidRequest("Feature title cannot be empty")

        for name, value in values.items():
            setattr(feature, name, value)
        await self._flush("update feature")
        logger.info(f"Updated feature {feature_id}: {sorted(values)}")
        return feature

    async def delete(self, feature_id: UUID) -> None:
        """Delete a feature and, first, its votes.

        If either step fails the whole operation fails.
        """
        feature = await self.get(feature_id)
        removed = await self.ledger.reset_feature(feature_id)
        await self.session.delete(feature)
        await self._flush("delete feature")
        logger.info(f"Deleted feature {feature_id} and {removed} vote records")

    # -------------------------------------------------------------------------
    # IMPORT
    # -------------------------------------------------------------------------

    async def import_batch(
        self,
        session_id: UUID,
        incoming: Sequence[ExternalFeature],
        replace_all: bool = False,
    ) -> ImportSummary:
        """Persist the merge rule for one import batch.

        With ``replace_all`` every existing feature of the session, hand
        entered ones included, is deleted with its votes first.
        """
        await self._require_session(session_id)
        summary = ImportSummary()
        if replace_all:
            summary.removed = await self._clear_session(session_id)
            by_external_id = {}
        else:
            result = await self.session.execute(
                select(Feature).where(
                    Feature.session_id == session_id,
                    Feature.external_id.is_not(None),
                )
            )
            by_external_id = {f.external_id: f for f in result.scalars()}

        for item in _dedupe(incoming):
            feature = by_external_id.get(item.external_id)
            if feature is not None:
                feature.title = item.title
                feature.description = item.description or ""
                feature.epic = item.resolved_epic
                feature.state = item.state
                feature.area_path = item.area_path
                feature.tags = list(item.tags) or None
                feature.external_url = item.url
                summary.updated += 1
            else:
                self.session.add(
                    Feature(
                        session_id=session_id,
                        title=item.title,
                        description=item.description or "",
                        epic=item.resolved_epic,
                        state=item.state,
                        area_path=item.area_path,
                        tags=list(item.tags) or None,
                        external_id=item.external_id,
                        external_url=item.url,
                    )
                )
                summary.created += 1

        await self._flush("import features")
        logger.info(
            f"Imported features into session {session_id}: "
            f"{summary.updated} updated, {summary.created} created, "
            f"{summary.removed} removed"
        )
        return summary

    async def import_from_tracker(
        self,
        session_id: UUID,
        source: FeatureSource,
        replace_all: bool = False,
    ) -> ImportSummary:
        """Fetch work items and merge them; a failed fetch changes nothing."""
        await self._require_session(session_id)
        try:
            incoming = await source.fetch_features()
        except Exception as e:
            logger.error(f"Feature import fetch failed for session {session_id}: {e}")
            raise ImportFailed(str(e) or e.__class__.__name__) from e
        return await self.import_batch(session_id, incoming, replace_all=replace_all)

    async def _clear_session(self, session_id: UUID) -> int:
        """Delete every feature of a session and the votes cast on them."""
        votes = await self.ledger.reset_all(session_id)
        try:
            result = await self.session.execute(
                delete(Feature)
                .where(Feature.session_id == session_id)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear features of session {session_id}: {e}")
            raise PersistenceFailure(str(e)) from e
        logger.info(
            f"Cleared {result.rowcount} features and {votes} vote records "
            f"from session {session_id}"
        )
        return result.rowcount

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _clean(fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise InvalidRequest(f"Unknown feature fields: {', '.join(sorted(unknown))}")
        values = dict(fields)
        if "title" in values and values["title"] is not None:
            values["title"] = values["title"].strip()
        if "description" in values and values["description"] is None:
            values["description"] = ""
        return values

    async def _flush(self, action: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceFailure(str(e)) from e
