"""Services for the accrual kernel (write side)."""

from accrual_kernel.services.activity_service import (
    ActivityService,
    ActivitySubmitResult,
    RecallResult,
)
from accrual_kernel.services.approval_service import ApprovalService, SubmissionOutcome
from accrual_kernel.services.audit_service import AuditEntry, AuditService
from accrual_kernel.services.config_service import PROCESSING_MONTH_KEY, ConfigService
from accrual_kernel.services.ingestion_service import (
    GrnUploadSummary,
    IngestionService,
    PoUploadSummary,
)
from accrual_kernel.services.non_po_service import NonPoService
from accrual_kernel.services.provision_cache_service import ProvisionCacheService
from accrual_kernel.services.provision_service import ProvisionService
from accrual_kernel.services.rule_service import RuleService

__all__ = [
    "PROCESSING_MONTH_KEY",
    "ActivityService",
    "ActivitySubmitResult",
    "ApprovalService",
    "AuditEntry",
    "AuditService",
    "ConfigService",
    "GrnUploadSummary",
    "IngestionService",
    "NonPoService",
    "PoUploadSummary",
    "ProvisionCacheService",
    "ProvisionService",
    "RecallResult",
    "RuleService",
    "SubmissionOutcome",
]
