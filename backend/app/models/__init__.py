from app.models.audit import AuditLog
from app.models.campaign import Attachment, Campaign
from app.models.donation import Donation
from app.models.user import User

__all__ = [
    # Donation ledger
    "Donation",
    # Campaigns
    "Campaign",
    "Attachment",
    # Users & audit
    "User",
    "AuditLog",
]
