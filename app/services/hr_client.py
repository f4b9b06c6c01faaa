"""
PayCore - HR Services Client

HTTP client for the remote HR services the payroll core consumes:
- compensation (salary) history
- employee allowance assignments
- attendance overtime pay
- deduction breakdowns
- employee directory and department membership
- notification dispatch

Every service wraps its payload as {"success": ..., "data": ...}.
Transport failures, non-2xx answers and payloads that do not match the
data contracts are raised as UpstreamServiceError so callers can tell
"could not compute" apart from "computed wrong".
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.config import settings
from app.schemas.compensation import (
    CompensationRecord,
    DeductionDetail,
    EmployeeAllowanceAssignment,
    EmployeeRef,
    NotificationReceipt,
)
from app.utils.error_handling import UpstreamServiceError

logger = logging.getLogger(__name__)


class HRServicesClient:
    """
    Async client for the HR services.

    One instance is shared per application (see main.lifespan); it owns
    an httpx.AsyncClient and must be closed with aclose().
    """

    ENDPOINTS = {
        "salary_history": "/api/salaries/employee/{employee_id}/history",
        "employee_allowances": "/api/employee-allowances/employee/{employee_id}",
        "overtime": "/api/attendance/overtime",
        "deductions": "/api/deductions/employee/{employee_id}",
        "employee": "/api/employees/{employee_id}",
        "employees": "/api/employees",
        "department_employees": "/api/departments/{department_id}/employees",
        "notification_email": "/api/notifications/email",
    }

    DIRECTORY_PAGE_SIZE = 500

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.hr_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.hr_api_timeout_seconds
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=settings.hr_api_headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        service_name: str,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Any:
        """
        Call an HR endpoint and return the unwrapped ``data`` member.

        Returns None for a 404 when allow_not_found is set.
        """
        try:
            response = await self._client.request(method, endpoint, params=params, json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamServiceError(
                service_name, f"request to {endpoint} timed out", original_error=e,
            )
        except httpx.RequestError as e:
            raise UpstreamServiceError(
                service_name, f"network error calling {endpoint}: {e}", original_error=e,
            )

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code >= 400:
            logger.warning(
                f"{service_name} answered {response.status_code} for {method} {endpoint}"
            )
            raise UpstreamServiceError(
                service_name,
                f"{method} {endpoint} failed with status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamServiceError(
                service_name, f"invalid JSON from {endpoint}",
                reason="INVALID_COLLABORATOR_DATA", original_error=e,
            )

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _parse(service_name: str, model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamServiceError(
                service_name,
                f"payload does not match {model.__name__}: {e.error_count()} error(s)",
                reason="INVALID_COLLABORATOR_DATA",
                original_error=e,
            )

    # ===========================================
    # COMPENSATION & ALLOWANCES
    # ===========================================

    async def get_compensation_history(self, employee_id: int) -> List[CompensationRecord]:
        """All compensation records of an employee, newest first as served."""
        data = await self._request(
            "compensation-service",
            "GET",
            self.ENDPOINTS["salary_history"].format(employee_id=employee_id),
            allow_not_found=True,
        )
        return [self._parse("compensation-service", CompensationRecord, item) for item in data or []]

    async def get_allowance_assignments(
        self,
        employee_id: int,
        start: date,
        end: date,
    ) -> List[EmployeeAllowanceAssignment]:
        """Allowance assignments of an employee overlapping [start, end]."""
        data = await self._request(
            "allowance-service",
            "GET",
            self.ENDPOINTS["employee_allowances"].format(employee_id=employee_id),
            params={"from": start.isoformat(), "to": end.isoformat()},
            allow_not_found=True,
        )
        return [
            self._parse("allowance-service", EmployeeAllowanceAssignment, item)
            for item in data or []
        ]

    # ===========================================
    # ATTENDANCE & DEDUCTIONS
    # ===========================================

    async def get_overtime_pay(self, employee_id: int, month: int, year: int) -> Decimal:
        data = await self._request(
            "attendance-service",
            "GET",
            self.ENDPOINTS["overtime"],
            params={"employeeId": employee_id, "month": month, "year": year},
        )
        if isinstance(data, dict):
            data = data.get("overtimePay")
        if data is None:
            return Decimal("0")
        try:
            return Decimal(str(data))
        except ArithmeticError as e:
            raise UpstreamServiceError(
                "attendance-service", f"overtime pay '{data}' is not a number",
                reason="INVALID_COLLABORATOR_DATA", original_error=e,
            )

    async def get_deduction_breakdown(
        self,
        employee_id: int,
        month: int,
        year: int,
    ) -> List[DeductionDetail]:
        data = await self._request(
            "deduction-service",
            "GET",
            self.ENDPOINTS["deductions"].format(employee_id=employee_id),
            params={"month": month, "year": year},
        )
        if isinstance(data, dict):
            data = data.get("deductionDetails") or data.get("items") or []
        return [self._parse("deduction-service", DeductionDetail, item) for item in data or []]

    # ===========================================
    # EMPLOYEE DIRECTORY
    # ===========================================

    async def get_employee(self, employee_id: int) -> Optional[EmployeeRef]:
        data = await self._request(
            "employee-service",
            "GET",
            self.ENDPOINTS["employee"].format(employee_id=employee_id),
            allow_not_found=True,
        )
        if data is None:
            return None
        return self._parse("employee-service", EmployeeRef, data)

    async def list_active_employee_ids(self) -> List[int]:
        return await self._collect_employee_ids(
            self.ENDPOINTS["employees"], params={"status": "ACTIVE"},
        )

    async def list_department_employee_ids(self, department_id: int) -> List[int]:
        return await self._collect_employee_ids(
            self.ENDPOINTS["department_employees"].format(department_id=department_id),
            allow_not_found=True,
        )

    async def _collect_employee_ids(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> List[int]:
        """
        Employee ids from a directory endpoint, following pages.

        Plain list bodies are complete as served; paginated
        {"content": [...], "last": ...} bodies are fetched page by page
        until the last one.
        """
        ids: List[int] = []
        page = 0
        while True:
            data = await self._request(
                "employee-service",
                "GET",
                endpoint,
                params={**(params or {}), "page": page, "size": self.DIRECTORY_PAGE_SIZE},
                allow_not_found=allow_not_found,
            )
            if not isinstance(data, dict):
                ids.extend(self._employee_ids(data))
                return ids

            content = data.get("content") or []
            ids.extend(self._employee_ids(content))
            if self._is_last_page(data, page):
                return ids
            if not content:
                raise UpstreamServiceError(
                    "employee-service",
                    f"page {page} of {endpoint} is empty but not the last page",
                    reason="INVALID_COLLABORATOR_DATA",
                )
            page += 1

    @staticmethod
    def _is_last_page(data: Dict[str, Any], page: int) -> bool:
        if "last" in data:
            return bool(data["last"])
        total_pages = data.get("totalPages")
        if total_pages is None:
            return True
        return page + 1 >= int(total_pages)

    @staticmethod
    def _employee_ids(items: Any) -> List[int]:
        ids = []
        for item in items or []:
            try:
                ids.append(int(item["id"]) if isinstance(item, dict) else int(item))
            except (KeyError, TypeError, ValueError) as e:
                raise UpstreamServiceError(
                    "employee-service",
                    f"directory entry {item!r} has no usable employee id",
                    reason="INVALID_COLLABORATOR_DATA",
                    original_error=e,
                )
        return ids

    # ===========================================
    # NOTIFICATIONS
    # ===========================================

    async def dispatch_email(
        self,
        to: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationReceipt:
        data = await self._request(
            "notification-service",
            "POST",
            self.ENDPOINTS["notification_email"],
            payload={
                "to": to,
                "subject": subject,
                "bodyText": body_text,
                "bodyHtml": body_html,
                "from": settings.email_from,
                "fromName": settings.email_from_name,
                "metadata": metadata or {},
            },
        )
        return self._parse("notification-service", NotificationReceipt, data)
