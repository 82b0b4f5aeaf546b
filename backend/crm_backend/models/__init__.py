"""ORM model exports for convenient imports elsewhere in the app."""

from crm_backend.models.base import Base
from crm_backend.models.crm_audit import CrmAuditLog
from crm_backend.models.crm_campaign import CrmCampaign
from crm_backend.models.crm_communication_log import CrmCommunicationLog
from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_order import CrmOrder
from crm_backend.models.crm_segment import CrmSegment
from crm_backend.models.crm_user import CrmUser

__all__ = [
    "Base",
    "CrmAuditLog",
    "CrmCampaign",
    "CrmCommunicationLog",
    "CrmCustomer",
    "CrmOrder",
    "CrmSegment",
    "CrmUser",
]
