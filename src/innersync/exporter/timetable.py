"""Export a timetable document (.tfx) into the three CSV upload files."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..utils.logging import get_logger, log_duration


STUDENT_COURSE_FILE = "StudentCourse.txt"
STUDENT_TIMETABLE_FILE = "StudentTimetable.txt"
TIMETABLE_FILE = "Timetable.txt"

logger = get_logger(__name__)


class ExportError(Exception):
    """Raised when a timetable export fails."""
    pass


class TimetableParseError(ExportError):
    """Raised when the timetable document is not valid JSON."""
    pass


@dataclass
class ExportResult:
    """Paths of the files written by an export."""

    student_course_path: Path
    student_timetable_path: Path
    timetable_path: Path
    output_dir: Path

    def upload_files(self) -> Dict[str, str]:
        """File map in the shape the upload client expects."""
        return {
            "student_course": str(self.student_course_path),
            "student_timetable": str(self.student_timetable_path),
            "timetable": str(self.timetable_path),
        }


@dataclass
class TimetableRow:
    day_order: int
    period_code: str
    class_code: str
    year: str
    teacher_code: str
    room_code: str
    day_name: str

    def fields(self) -> List[str]:
        order = str(self.day_order or "")
        if not (self.year or self.teacher_code or self.room_code):
            return [order, self.period_code, self.class_code, self.year, self.teacher_code, self.day_name]
        return [
            order, self.period_code, self.class_code, self.year,
            self.teacher_code, self.room_code, self.day_name
        ]


@dataclass
class Lookups:
    days: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    periods: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    class_names: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    roll_classes: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    year_levels: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    teachers: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    rooms: Dict[Any, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Lookups":
        def index(key: str, id_field: str) -> Dict[Any, Dict[str, Any]]:
            return {item.get(id_field): item for item in data.get(key) or []}

        days = {}
        for position, day in enumerate(data.get("Days") or [], start=1):
            days[day.get("DayID")] = {**day, "order": position}

        return cls(
            days=days,
            periods=index("Periods", "PeriodID"),
            class_names=index("ClassNames", "ClassNameID"),
            roll_classes=index("RollClasses", "RollClassID"),
            year_levels=index("YearLevels", "YearLevelID"),
            teachers=index("Teachers", "TeacherID"),
            rooms=index("Rooms", "RoomID"),
        )


def safe_year(value: Any) -> str:
    """Year level as a two-digit string; empty when missing."""
    if value is None or value == "":
        return ""
    return str(value).zfill(2)


def csv_row(values: Iterable[Any]) -> str:
    """Quote every field, double embedded quotes, terminate with CRLF."""
    quoted = []
    for value in values:
        text = "" if value is None else str(value)
        quoted.append('"' + text.replace('"', '""') + '"')
    return ",".join(quoted) + "\r\n"


def _lesson_codes(student: Dict[str, Any]) -> List[str]:
    codes = []
    for lesson in student.get("StudentLessons") or []:
        code = (lesson.get("ClassCode") or "").strip()
        if code:
            codes.append(code)
    return codes


def collation_key(value: str) -> Tuple[str, str]:
    """Case-insensitive order with lower case first on ties."""
    return value.casefold(), value.swapcase()


def build_student_course_rows(students: List[Dict[str, Any]]) -> List[List[str]]:
    """Unique (year, class code) pairs, sorted by year then class code."""
    seen = set()
    for student in students:
        year = safe_year(student.get("YearLevel"))
        for code in _lesson_codes(student):
            seen.add((year, code))
    ordered = sorted(seen, key=lambda pair: (collation_key(pair[0]), collation_key(pair[1])))
    return [[year, code] for year, code in ordered]


def build_student_timetable_rows(students: List[Dict[str, Any]]) -> List[List[str]]:
    """One row per student per distinct class code."""
    rows = []
    for student in students:
        codes = sorted(set(_lesson_codes(student)), key=collation_key)
        if not codes:
            continue
        base = [
            student.get("LastName") or "",
            student.get("FirstName") or "",
            safe_year(student.get("YearLevel")),
            student.get("Code") or "",
            student.get("House") or "",
            student.get("HomeGroup") or "",
        ]
        rows.extend(base + [code] for code in codes)
    return rows


def build_timetable_rows(entries: List[Dict[str, Any]], lookups: Lookups) -> List[TimetableRow]:
    """Resolve timetable entries; entries without a period or class are dropped."""
    rows = []
    for entry in entries:
        period = lookups.periods.get(entry.get("PeriodID"))
        if not period:
            continue
        class_name = lookups.class_names.get(entry.get("ClassNameID"))
        if not class_name:
            continue

        day = lookups.days.get(period.get("DayID")) or {}
        roll_class = lookups.roll_classes.get(entry.get("RollClassID"))
        year_level = lookups.year_levels.get(roll_class.get("YearLevelID")) if roll_class else None
        year_code = year_level.get("Code") if year_level else None

        teacher_required = not class_name.get("TeacherNotRequired")
        teacher = None
        room = None
        if teacher_required and entry.get("TeacherID"):
            teacher = lookups.teachers.get(entry.get("TeacherID"))
        if teacher_required and entry.get("RoomID"):
            room = lookups.rooms.get(entry.get("RoomID"))

        rows.append(TimetableRow(
            day_order=day.get("order") or 0,
            period_code=period.get("Code") or "",
            class_code=class_name.get("Code") or "",
            year=safe_year(year_code) if year_code else "",
            teacher_code=(teacher or {}).get("Code") or "",
            room_code=(room or {}).get("Code") or "",
            day_name=day.get("Name") or "",
        ))
    return rows


def _write_rows(path: Path, rows: Iterable[Iterable[Any]]) -> None:
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write("".join(csv_row(row) for row in rows))


def load_document(tfx_file: Union[str, Path]) -> Dict[str, Any]:
    """Read and parse a timetable document."""
    with open(tfx_file, 'r', encoding='utf-8-sig') as f:
        raw = f.read()
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise TimetableParseError(f"Invalid timetable document {tfx_file}: {e}")
    if not isinstance(data, dict):
        raise TimetableParseError(f"Invalid timetable document {tfx_file}: expected an object")
    return data


@log_duration
async def generate_timetable(
    tfx_file: Union[str, Path],
    output_dir: Union[str, Path],
    base_dir: Optional[Union[str, Path]] = None
) -> ExportResult:
    """Export ``tfx_file`` into ``output_dir``.

    Relative paths resolve against ``base_dir`` (default: current directory).

    Raises:
        FileNotFoundError: If the timetable document does not exist
        TimetableParseError: If the document is malformed
    """
    base = Path(base_dir or Path.cwd())
    tfx_path = Path(tfx_file)
    if not tfx_path.is_absolute():
        tfx_path = base / tfx_path
    out_dir = Path(output_dir)
    if not out_dir.is_absolute():
        out_dir = base / out_dir

    logger.info("Reading timetable", tfx_file=str(tfx_path))
    data = load_document(tfx_path)

    lookups = Lookups.from_document(data)
    out_dir.mkdir(parents=True, exist_ok=True)

    result = ExportResult(
        student_course_path=out_dir / STUDENT_COURSE_FILE,
        student_timetable_path=out_dir / STUDENT_TIMETABLE_FILE,
        timetable_path=out_dir / TIMETABLE_FILE,
        output_dir=out_dir,
    )

    students = data.get("Students") or []
    _write_rows(result.student_course_path, build_student_course_rows(students))
    _write_rows(result.student_timetable_path, build_student_timetable_rows(students))
    _write_rows(
        result.timetable_path,
        (row.fields() for row in build_timetable_rows(data.get("Timetable") or [], lookups))
    )

    logger.info(
        "Timetable exported",
        student_course=str(result.student_course_path),
        student_timetable=str(result.student_timetable_path),
        timetable=str(result.timetable_path)
    )

    return result
