from app.models.audit import AuditLog
from app.crm.models import (
	CRMAccount,
	CRMContact,
	CRMLead,
	CRMOpportunity,
)

__all__ = [
	"AuditLog",
	"CRMAccount",
	"CRMContact",
	"CRMLead",
	"CRMOpportunity",
]
