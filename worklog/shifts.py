"""
Shift schedules: shift codes, custom shift enums and CSV import/export.

CSV layout is one row per team member:

    Email,1,2,3,...,31
    alice@example.com,M,M,A,...

Days past the end of the month are ignored. A cell holding an unknown
code is stored as the default code and counted as invalid. A row whose
email is not a current team member is skipped entirely.
"""
import calendar
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .client import RemoteDataClient
from .errors import ShiftUploadError, ValidationError
from .schema import ShiftEnum

logger = logging.getLogger(__name__)

SHIFT_TYPES = {
    "M": "Morning",
    "A": "Afternoon",
    "N": "Night",
    "G": "General/Day",
    "H": "Holiday",
    "L": "Leave",
}

# Every project/team carries these; G is the default unless another is chosen
MANDATORY_SHIFT_ENUMS = [
    ShiftEnum("H", "Holiday", "00:00", "23:59", "#EF4444", is_default=False),
    ShiftEnum("G", "General/Day", "09:00", "18:00", "#10B981", is_default=True),
]
MANDATORY_CODES = {e.shift_identifier for e in MANDATORY_SHIFT_ENUMS}
DEFAULT_SHIFT_CODE = "G"


@dataclass
class UploadResult:
    rows: List[Dict[str, str]] = field(default_factory=list)   # shift_schedules rows to upsert
    updated: int = 0
    skipped: int = 0
    invalid: int = 0

    @property
    def summary(self) -> str:
        return (f"Updated {self.updated} shifts. Skipped {self.skipped} rows. "
                f"{self.invalid} invalid shift codes replaced with the default.")


def shift_date(year: int, month: int, day: int) -> str:
    return f"{year:04d}-{month:02d}-{day:02d}"


# ── Shift enums ─────────────────────────────────────────────────────────────

def list_shift_enums(client: RemoteDataClient, project_id: str, team_id: str) -> List[ShiftEnum]:
    result = client.rpc("get_custom_shift_enums", {"p_project_id": project_id, "p_team_id": team_id})
    return [ShiftEnum.from_dict(row) for row in result.data or []]


def ensure_mandatory_enums(client: RemoteDataClient, project_id: str, team_id: str) -> List[ShiftEnum]:
    """Create any missing mandatory enums. Returns the full enum list."""
    enums = list_shift_enums(client, project_id, team_id)
    present = {e.shift_identifier for e in enums}
    has_default = any(e.is_default for e in enums)
    missing = []
    for template in MANDATORY_SHIFT_ENUMS:
        if template.shift_identifier in present:
            continue
        row = template.to_dict()
        row.pop("id")
        row.update(project_id=project_id, team_id=team_id)
        row["is_default"] = template.is_default and not has_default
        missing.append(row)
    if not missing:
        return enums
    client.upsert("custom_shift_enums", missing)
    logger.info(f"Created mandatory shift enums {[r['shift_identifier'] for r in missing]} "
                f"for {project_id}:{team_id}")
    return list_shift_enums(client, project_id, team_id)


def default_shift_code(enums: Iterable[ShiftEnum], fallback: str = DEFAULT_SHIFT_CODE) -> str:
    for e in enums:
        if e.is_default:
            return e.shift_identifier
    return (fallback or DEFAULT_SHIFT_CODE).upper()


def save_shift_enum(client: RemoteDataClient, enum: ShiftEnum, project_id: str, team_id: str) -> ShiftEnum:
    code = (enum.shift_identifier or "").strip().upper()
    if not code or not (enum.shift_name or "").strip():
        raise ValidationError("Shift identifier and name are required")
    row = enum.to_dict()
    row.pop("id")
    row.update(project_id=project_id, team_id=team_id, shift_identifier=code)
    return ShiftEnum.from_dict(client.upsert("custom_shift_enums", row).data[0])


def delete_shift_enum(client: RemoteDataClient, enum: ShiftEnum):
    if enum.shift_identifier in MANDATORY_CODES:
        raise ValidationError(f"Shift {enum.shift_identifier} is mandatory and cannot be deleted")
    if not enum.id:
        raise ValidationError("Shift enum has no id")
    client.delete("custom_shift_enums", enum.id)


def set_default_enum(client: RemoteDataClient, enums: List[ShiftEnum], identifier: str) -> List[ShiftEnum]:
    """Make one enum the default and clear the flag on every other."""
    identifier = identifier.upper()
    if not any(e.shift_identifier == identifier for e in enums):
        raise ValidationError(f"Unknown shift code: {identifier}")
    for e in enums:
        wanted = e.shift_identifier == identifier
        if e.is_default != wanted and e.id:
            client.update("custom_shift_enums", e.id, {"is_default": wanted})
        e.is_default = wanted
    return enums


# ── CSV ─────────────────────────────────────────────────────────────────────

def _header_days(header: List[str]) -> Dict[int, int]:
    """Map CSV column position -> day number for every valid day header."""
    if not header or header[0].strip().lower() != "email":
        raise ShiftUploadError('CSV file must have "Email" as the first column')
    days = {}
    for position, cell in enumerate(header[1:], start=1):
        try:
            day = int(cell.strip())
        except ValueError:
            continue
        if 1 <= day <= 31:
            days[position] = day
    if not days:
        raise ShiftUploadError("CSV file must have valid day numbers (1-31) in the header")
    return days


def parse_schedule_csv(text: str, year: int, month: int, members: Iterable[str],
                       valid_codes: Iterable[str], default_code: str = DEFAULT_SHIFT_CODE,
                       project_id: Optional[str] = None, team_id: Optional[str] = None) -> UploadResult:
    lines = [row for row in csv.reader(io.StringIO((text or "").strip())) if any(c.strip() for c in row)]
    if len(lines) < 2:
        raise ShiftUploadError("CSV file must have at least a header and one data row")
    days = _header_days(lines[0])
    days_in_month = calendar.monthrange(year, month)[1]
    # CSV emails match case-insensitively; rows carry the roster spelling
    canonical = {m.strip().lower(): m.strip() for m in members}
    codes: Set[str] = {c.upper() for c in valid_codes}
    default_code = default_code.upper()

    result = UploadResult()
    for line_no, row in enumerate(lines[1:], start=2):
        email = row[0].strip() if row else ""
        if not email:
            logger.warning(f"Skipping row {line_no}: no email")
            result.skipped += 1
            continue
        member = canonical.get(email.lower())
        if member is None:
            logger.warning(f"Skipping {email}: not a member of the selected team")
            result.skipped += 1
            continue

        for position, day in days.items():
            if day > days_in_month or position >= len(row):
                continue
            code = row[position].strip().upper()
            if not code:
                continue
            if code not in codes:
                logger.warning(f"Invalid shift {code!r} for {email} on day {day}, using {default_code}")
                code = default_code
                result.invalid += 1
            result.rows.append({
                "project_id": project_id,
                "team_id": team_id,
                "user_email": member,
                "shift_date": shift_date(year, month, day),
                "shift_type": code,
            })
            result.updated += 1
    return result


def load_team_members(client: RemoteDataClient, team_id: str) -> List[str]:
    rows = client.select("team_members", filters={"team_id": team_id}, select="user_email").data or []
    return [r["user_email"] for r in rows]


def load_schedule(client: RemoteDataClient, project_id: str, team_id: str,
                  year: int, month: int) -> Dict[str, Dict[str, str]]:
    """email -> {date: shift code} for one month."""
    last_day = calendar.monthrange(year, month)[1]
    rows = client.select(
        "shift_schedules",
        filters={
            "project_id": project_id,
            "team_id": team_id,
            "shift_date_gte": shift_date(year, month, 1),
            "shift_date_lte": shift_date(year, month, last_day),
        },
        order={"column": "shift_date", "ascending": True},
    ).data or []
    schedule: Dict[str, Dict[str, str]] = {}
    for row in rows:
        schedule.setdefault(row["user_email"], {})[row["shift_date"]] = row["shift_type"]
    return schedule


def import_schedule_csv(client: RemoteDataClient, text: str, project_id: str, team_id: str,
                        year: int, month: int, default_code: Optional[str] = None) -> UploadResult:
    """Parse a schedule CSV and upsert every resulting shift."""
    members = load_team_members(client, team_id)
    enums = ensure_mandatory_enums(client, project_id, team_id)
    valid_codes = set(SHIFT_TYPES) | {e.shift_identifier for e in enums}
    default_code = default_shift_code(enums, default_code or DEFAULT_SHIFT_CODE)

    result = parse_schedule_csv(text, year, month, members, valid_codes, default_code,
                                project_id=project_id, team_id=team_id)
    for row in result.rows:
        client.rpc("upsert_shift_schedules", {
            "p_project_id": row["project_id"],
            "p_team_id": row["team_id"],
            "p_user_email": row["user_email"],
            "p_shift_date": row["shift_date"],
            "p_shift_type": row["shift_type"],
        })
    logger.info(f"Imported schedule {year}-{month:02d} for {project_id}:{team_id}: {result.summary}")
    return result


def export_schedule_csv(schedule: Dict[str, Dict[str, str]], members: Iterable[str],
                        year: int, month: int, default_code: str = DEFAULT_SHIFT_CODE) -> str:
    days_in_month = calendar.monthrange(year, month)[1]
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(["Email"] + [str(d) for d in range(1, days_in_month + 1)])
    for email in members:
        shifts = schedule.get(email, {})
        writer.writerow([email] + [
            shifts.get(shift_date(year, month, d)) or default_code
            for d in range(1, days_in_month + 1)
        ])
    return out.getvalue()
