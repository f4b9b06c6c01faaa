"""
PayCore - Payroll Router

API endpoints for payroll calculation, approval workflow, reporting and
payslip delivery. Every response is wrapped in {"success": true, "data": ...}.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from app.config import settings
from app.dependencies import get_payroll_service
from app.models.payroll import PayrollStatus
from app.services.payroll_calculator import CalculationOptions
from app.services.payroll_service import PayrollService
from app.schemas.payroll import (
    ApiResponse,
    BulkDeliveryResponse,
    CalculatePayrollRequest,
    CalculationResultResponse,
    CancelPayrollRequest,
    CompletePayrollRequest,
    DeliveryReceiptResponse,
    Page,
    PayrollSummaryResponse,
    PayslipAuditEventResponse,
    PayslipResponse,
    SendBulkPayslipEmailRequest,
    SendPayslipEmailRequest,
    SortDirectionEnum,
    SortFieldEnum,
    UpdatePayrollRequest,
)


router = APIRouter()

MAX_PAGE_SIZE = settings.payroll_max_page_size


def _options(request) -> CalculationOptions:
    return CalculationOptions(
        include_overtime=request.include_overtime,
        include_allowances=request.include_allowances,
        include_deductions=request.include_deductions,
    )


def _page(rows, total: int, page: int, size: int) -> Page[PayslipResponse]:
    return Page[PayslipResponse].build(
        [PayslipResponse.model_validate(row) for row in rows],
        total_elements=total,
        number=page,
        size=size,
    )


# ===========================================
# CALCULATION
# ===========================================

@router.get(
    "/preview",
    response_model=ApiResponse[CalculationResultResponse],
    summary="Preview payroll",
    description="Compute payslips for a period without saving anything. Safe to repeat.",
)
async def preview_payroll(
    month: int = Query(..., description="Pay period month (1-12)"),
    year: int = Query(..., description="Pay period year"),
    department_id: Optional[int] = Query(None, alias="departmentId"),
    include_overtime: bool = Query(True),
    include_allowances: bool = Query(True),
    include_deductions: bool = Query(True),
    service: PayrollService = Depends(get_payroll_service),
):
    result = await service.preview_payroll(
        month, year,
        department_id=department_id,
        options=CalculationOptions(
            include_overtime=include_overtime,
            include_allowances=include_allowances,
            include_deductions=include_deductions,
        ),
    )
    return ApiResponse(data=CalculationResultResponse.from_result(result))


@router.post(
    "/calculate",
    response_model=ApiResponse[CalculationResultResponse],
    summary="Calculate payroll",
    description="Compute and save DRAFT payslips. Re-running overwrites DRAFT rows; paid or cancelled payslips are reported, never changed.",
)
async def calculate_payroll(
    request: CalculatePayrollRequest,
    service: PayrollService = Depends(get_payroll_service),
):
    result = await service.calculate_payroll(
        request.month,
        request.year,
        employee_ids=request.employee_ids,
        department_id=request.department_id,
        options=_options(request),
        actor_id=request.actor_id,
    )
    return ApiResponse(
        message=f"{len(result.payslips)} payslip(s) calculated, {len(result.omissions)} omitted",
        data=CalculationResultResponse.from_result(result),
    )


# ===========================================
# LISTING & REPORTS
# ===========================================

@router.get(
    "",
    response_model=ApiResponse[Page[PayslipResponse]],
    summary="List payslips",
)
async def list_payrolls(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    department_id: Optional[int] = Query(None, alias="departmentId"),
    payroll_status: Optional[PayrollStatus] = Query(None, alias="status"),
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    sort_by: SortFieldEnum = Query("created_at", alias="sortBy"),
    sort_direction: SortDirectionEnum = Query("desc", alias="sortDirection"),
    service: PayrollService = Depends(get_payroll_service),
):
    rows, total = await service.list_payrolls(
        month=month,
        year=year,
        department_id=department_id,
        status=payroll_status,
        page=page,
        size=size,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    return ApiResponse(data=_page(rows, total, page, size))


@router.get(
    "/summary",
    response_model=ApiResponse[PayrollSummaryResponse],
    summary="Payroll summary for a period",
)
async def get_payroll_summary(
    month: int = Query(...),
    year: int = Query(...),
    department_id: Optional[int] = Query(None, alias="departmentId"),
    service: PayrollService = Depends(get_payroll_service),
):
    summary = await service.get_payroll_summary(month, year, department_id=department_id)
    return ApiResponse(data=PayrollSummaryResponse.from_summary(summary))


@router.get(
    "/department/{department_id}/report",
    response_model=ApiResponse[Page[PayslipResponse]],
    summary="Department payroll report",
)
async def get_department_payroll_report(
    department_id: int = Path(...),
    month: int = Query(...),
    year: int = Query(...),
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    service: PayrollService = Depends(get_payroll_service),
):
    rows, total = await service.get_department_payroll_report(
        department_id, month, year, page=page, size=size,
    )
    return ApiResponse(data=_page(rows, total, page, size))


@router.get(
    "/employee/{employee_id}/history",
    response_model=ApiResponse[Page[PayslipResponse]],
    summary="Employee payroll history",
)
async def get_employee_payroll_history(
    employee_id: int = Path(...),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: int = Query(0, ge=0),
    size: int = Query(12, ge=1, le=MAX_PAGE_SIZE),
    service: PayrollService = Depends(get_payroll_service),
):
    rows, total = await service.get_employee_payroll_history(
        employee_id, start_date=start_date, end_date=end_date, page=page, size=size,
    )
    return ApiResponse(data=_page(rows, total, page, size))


@router.get(
    "/employee/{employee_id}",
    response_model=ApiResponse[PayslipResponse],
    summary="Employee payslip for a period",
)
async def get_employee_payroll(
    employee_id: int = Path(...),
    month: int = Query(...),
    year: int = Query(...),
    service: PayrollService = Depends(get_payroll_service),
):
    payslip = await service.get_employee_payroll(employee_id, month, year)
    return ApiResponse(data=PayslipResponse.model_validate(payslip))


# ===========================================
# EMAIL
# ===========================================

@router.post(
    "/send-bulk-email",
    response_model=ApiResponse[BulkDeliveryResponse],
    summary="Email several payslips",
)
async def send_bulk_payslip_emails(
    request: SendBulkPayslipEmailRequest,
    service: PayrollService = Depends(get_payroll_service),
):
    result = await service.send_bulk_payslip_emails(
        request.payslip_ids,
        custom_subject=request.custom_subject,
        custom_message=request.custom_message,
        sent_by=request.sent_by,
    )
    return ApiResponse(
        message=f"{len(result.sent)} of {result.requested} payslip email(s) sent",
        data=BulkDeliveryResponse.model_validate(result),
    )


@router.post(
    "/{payslip_id}/send-email",
    response_model=ApiResponse[DeliveryReceiptResponse],
    summary="Email a payslip",
)
async def send_payslip_email(
    request: SendPayslipEmailRequest,
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    receipt = await service.send_payslip_email(
        payslip_id,
        custom_subject=request.custom_subject,
        custom_message=request.custom_message,
        sent_by=request.sent_by,
    )
    return ApiResponse(data=DeliveryReceiptResponse.model_validate(receipt))


# ===========================================
# SINGLE PAYSLIP & LIFECYCLE
# ===========================================

@router.get(
    "/{payslip_id}",
    response_model=ApiResponse[PayslipResponse],
    summary="Get payslip",
)
async def get_payroll(
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    payslip = await service.get_payroll(payslip_id)
    return ApiResponse(data=PayslipResponse.model_validate(payslip))


@router.get(
    "/{payslip_id}/audit",
    response_model=ApiResponse[List[PayslipAuditEventResponse]],
    summary="Payslip audit trail",
)
async def get_payslip_audit_trail(
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    events = await service.get_payslip_audit_trail(payslip_id)
    return ApiResponse(data=[PayslipAuditEventResponse.model_validate(e) for e in events])


@router.put(
    "/{payslip_id}",
    response_model=ApiResponse[PayslipResponse],
    summary="Recalculate a DRAFT payslip",
)
async def update_payroll(
    request: UpdatePayrollRequest,
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    payslip = await service.update_payroll(
        payslip_id,
        options=_options(request),
        notes=request.notes,
        actor_id=request.actor_id,
    )
    return ApiResponse(data=PayslipResponse.model_validate(payslip))


@router.delete(
    "/{payslip_id}",
    response_model=ApiResponse[None],
    summary="Delete a DRAFT payslip",
)
async def delete_payroll(
    payslip_id: int = Path(...),
    actor_id: Optional[int] = Query(None, alias="actorId"),
    service: PayrollService = Depends(get_payroll_service),
):
    await service.delete_payroll(payslip_id, actor_id=actor_id)
    return ApiResponse(message=f"Payslip {payslip_id} deleted")


@router.post(
    "/{payslip_id}/approve",
    response_model=ApiResponse[PayslipResponse],
    summary="Approve a DRAFT payslip",
)
async def approve_payroll(
    payslip_id: int = Path(...),
    approver_id: int = Query(..., alias="approverId"),
    service: PayrollService = Depends(get_payroll_service),
):
    payslip = await service.approve_payroll(payslip_id, approver_id)
    return ApiResponse(data=PayslipResponse.model_validate(payslip))


@router.post(
    "/{payslip_id}/complete",
    response_model=ApiResponse[PayslipResponse],
    summary="Mark a payslip as paid",
)
async def complete_payroll(
    request: Optional[CompletePayrollRequest] = None,
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    request = request or CompletePayrollRequest()
    payslip = await service.complete_payroll(
        payslip_id, pay_date=request.pay_date, actor_id=request.actor_id,
    )
    return ApiResponse(data=PayslipResponse.model_validate(payslip))


@router.post(
    "/{payslip_id}/cancel",
    response_model=ApiResponse[PayslipResponse],
    summary="Cancel a payslip",
    status_code=status.HTTP_200_OK,
)
async def cancel_payroll(
    request: Optional[CancelPayrollRequest] = None,
    payslip_id: int = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    request = request or CancelPayrollRequest()
    payslip = await service.cancel_payroll(
        payslip_id, actor_id=request.actor_id, reason=request.reason,
    )
    return ApiResponse(data=PayslipResponse.model_validate(payslip))
