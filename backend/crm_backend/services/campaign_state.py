"""Forward-only campaign status machine."""

from __future__ import annotations

from crm_backend.core.errors import InvalidStatusTransitionError
from crm_backend.schemas.campaign import CampaignStatus

ALLOWED_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.PROCESSING}),
    CampaignStatus.PROCESSING: frozenset({CampaignStatus.COMPLETED, CampaignStatus.FAILED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset(),
}


def ensure_transition(current: str | CampaignStatus, target: CampaignStatus) -> CampaignStatus:
    """Return ``target`` if a campaign in ``current`` may move there, else raise."""

    source = CampaignStatus(current)
    if target not in ALLOWED_TRANSITIONS[source]:
        raise InvalidStatusTransitionError(source.value, target.value)
    return target
