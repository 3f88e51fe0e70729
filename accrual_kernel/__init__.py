"""
Accrual Kernel

PO-line accrual provisioning and approval workflow:
- Time-prorated and activity-percentage provision calculation
- GRN reconciliation against cumulative delivery snapshots
- Submission, approval, recall and return workflows
- Rule-based approver suggestions
"""

__version__ = "0.1.0"
