from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from io import BytesIO
from zoneinfo import ZoneInfo

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from warehouse_queue.models import (
    JOB_TYPE_LABELS,
    TIME_SLOT_LABELS,
    Registration,
    RegistrationStatus,
    TimeSlot,
    TruckType,
)
from warehouse_queue.services.shift_window import ShiftWindow, queue_timezone

QUEUE_HEADERS = [
    "หมายเลขคิว",
    "เวลาลงทะเบียน",
    "ช่วงเวลา",
    "ชื่อ-นามสกุล",
    "ทะเบียนรถ",
    "แหล่งพาหนะ",
    "ประเภทรถ",
    "งาน",
    "เที่ยวรับงาน",
    "สถานะ",
    "หมายเหตุ",
]

STATUS_LABELS: dict[RegistrationStatus, str] = {
    RegistrationStatus.PENDING: "รอยืนยัน",
    RegistrationStatus.CONFIRMED: "ยืนยันแล้ว",
    RegistrationStatus.IN_PROGRESS: "กำลังดำเนินการ",
    RegistrationStatus.COMPLETED: "เสร็จสิ้น",
    RegistrationStatus.CANCELLED: "ยกเลิก",
}

TRUCK_TYPE_LABELS: dict[TruckType, str] = {
    TruckType.HEAVY: "รถหนัก",
    TruckType.LIGHT: "รถเบา",
}

HEADER_FILL = PatternFill(fill_type="solid", fgColor="3730A3")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EEF2FF")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FAFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7F8FE")
CANCELLED_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
COMPLETED_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="3730A3", size=14)
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5DAEC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _to_excel_datetime(value: datetime | None, tz: ZoneInfo) -> datetime | None:
    # Excel cells cannot hold tz-aware datetimes.
    if value is None:
        return None
    return value.astimezone(tz).replace(tzinfo=None)


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        if cell.value is None:
            continue
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _merge_title(ws: Worksheet, row: int, text: str) -> None:
    ws.merge_cells(start_row=row, start_column=1, end_row=row, end_column=len(QUEUE_HEADERS))
    cell = ws.cell(row=row, column=1, value=text)
    cell.font = TITLE_FONT
    cell.alignment = Alignment(horizontal="left", vertical="center")


def _style_metadata_rows(ws: Worksheet, *, start_row: int, end_row: int) -> None:
    for row_idx in range(start_row, end_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER


def _registration_row(registration: Registration, tz: ZoneInfo) -> list[object]:
    return [
        registration.queue_number,
        _to_excel_datetime(registration.created_at, tz),
        TIME_SLOT_LABELS.get(registration.time_slot, registration.time_slot.value),
        registration.driver_name,
        registration.vehicle_plate,
        registration.carrier,
        TRUCK_TYPE_LABELS.get(registration.truck_type, registration.truck_type.value),
        JOB_TYPE_LABELS.get(registration.job_type, registration.job_type.value),
        registration.trip_number or "",
        STATUS_LABELS.get(registration.status, registration.status.value),
        registration.notes or "",
    ]


def _write_queue_sheet(
    ws: Worksheet,
    *,
    registrations: Sequence[Registration],
    window: ShiftWindow,
    tz: ZoneInfo,
) -> None:
    start_local = window.start_utc.astimezone(tz)
    end_local = window.end_utc.astimezone(tz)
    _merge_title(ws, 1, f"รายการคิวรับของ {start_local:%Y-%m-%d %H:%M} - {end_local:%Y-%m-%d %H:%M}")

    slot_counts = Counter(item.time_slot for item in registrations)
    metadata = [
        ("กะ", window.shift_date.isoformat()),
        ("เขตเวลา", str(tz)),
        ("จำนวนคิวทั้งหมด", len(registrations)),
        (f"ช่วง{TIME_SLOT_LABELS[TimeSlot.MORNING]}", slot_counts.get(TimeSlot.MORNING, 0)),
        (f"ช่วง{TIME_SLOT_LABELS[TimeSlot.AFTERNOON]}", slot_counts.get(TimeSlot.AFTERNOON, 0)),
    ]
    for offset, (label, value) in enumerate(metadata):
        ws.cell(row=3 + offset, column=1, value=label)
        ws.cell(row=3 + offset, column=2, value=value)
    _style_metadata_rows(ws, start_row=3, end_row=2 + len(metadata))

    header_row = 4 + len(metadata)
    for col_idx, header in enumerate(QUEUE_HEADERS, start=1):
        ws.cell(row=header_row, column=col_idx, value=header)
    _style_header(ws, header_row)

    for row_offset, registration in enumerate(registrations, start=1):
        row_idx = header_row + row_offset
        for col_idx, value in enumerate(_registration_row(registration, tz), start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = THIN_BORDER
            if col_idx == 2 and value is not None:
                cell.number_format = "yyyy-mm-dd hh:mm"
            if registration.status == RegistrationStatus.CANCELLED:
                cell.fill = CANCELLED_FILL
            elif registration.status == RegistrationStatus.COMPLETED:
                cell.fill = COMPLETED_FILL
            elif row_offset % 2 == 0:
                cell.fill = ZEBRA_FILL

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)


def _write_summary_sheet(ws: Worksheet, *, registrations: Sequence[Registration]) -> None:
    ws.append(["สถานะ", *[TIME_SLOT_LABELS[slot] for slot in TimeSlot], "รวม"])
    _style_header(ws, 1)
    counts = Counter((item.status, item.time_slot) for item in registrations)
    for status in RegistrationStatus:
        per_slot = [counts.get((status, slot), 0) for slot in TimeSlot]
        ws.append([STATUS_LABELS[status], *per_slot, sum(per_slot)])
    totals = [sum(1 for item in registrations if item.time_slot == slot) for slot in TimeSlot]
    ws.append(["รวม", *totals, len(registrations)])
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
    _auto_width(ws)


def build_queue_xlsx_bytes(registrations: Sequence[Registration], window: ShiftWindow) -> bytes:
    tz = queue_timezone()
    wb = Workbook()
    ws = wb.active
    ws.title = "Queue"
    _write_queue_sheet(ws, registrations=registrations, window=window, tz=tz)
    _write_summary_sheet(wb.create_sheet("Summary"), registrations=registrations)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
