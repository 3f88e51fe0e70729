"""ORM models for the accrual kernel."""

from accrual_kernel.models.activity import ActivityAssignmentModel, BusinessResponseModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.non_po import (
    NonPoAssignmentModel,
    NonPoFormModel,
    NonPoSubmissionModel,
)
from accrual_kernel.models.period_calculation import PeriodCalculationModel
from accrual_kernel.models.po_line import (
    GrnTransactionModel,
    GrnUploadModel,
    PoLineModel,
    PoUploadModel,
)
from accrual_kernel.models.rules import ApprovalRuleModel
from accrual_kernel.models.system import AuditLogModel, SystemConfigModel

__all__ = [
    "ActivityAssignmentModel",
    "BusinessResponseModel",
    "ApprovalSubmissionModel",
    "NonPoAssignmentModel",
    "NonPoFormModel",
    "NonPoSubmissionModel",
    "PeriodCalculationModel",
    "GrnTransactionModel",
    "GrnUploadModel",
    "PoLineModel",
    "PoUploadModel",
    "ApprovalRuleModel",
    "AuditLogModel",
    "SystemConfigModel",
]
