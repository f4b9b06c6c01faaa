"""
PayCore - Routers Package

FastAPI route handlers.

Routers:
- payroll: Payroll calculation, approval workflow, reports and payslip email
"""

from app.routers import payroll

__all__ = [
    "payroll",
]
