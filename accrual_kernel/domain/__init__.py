"""Pure domain types for the accrual kernel (ZERO I/O)."""
