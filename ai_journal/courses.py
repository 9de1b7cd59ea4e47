from __future__ import annotations

from datetime import date

from .errors import ValidationError
from .models import CourseInfo

COURSES: dict[str, str] = {
    "OLID 500": "Foundations: Instructional Design, Training and Performance",
    "OLID 501": "Design and Delivery of Online Learning",
    "OLID 502": "Interactive Media for Learning",
    "OLID 503": "Universal Design & Accessibility",
    "OLID 504": "App Design & Task Analysis",
    "OLID 505": "Usability & Problem Solving with AI",
    "OLID 506": "Learning Performance & Project Management",
    "OLID 507": "Online Content Management",
    "OLID 508": "Design Studio with AI",
    "OLID 509": "Emerging Technologies Research Studio",
    "OLID 510": "Emerging Technologies and the Workplace",
    "OLID 511": "Story-based Learning & Gamification",
    "OLID 512": "Instructional Design Methods",
}

TERMS: tuple[str, ...] = ("Fall", "Spring", "Summer")


def make_course_info(
    course_id: str,
    student_name: str,
    student_id: str = "",
    term: str = "Fall",
    year: int | str | None = None,
    course_title: str | None = None,
) -> CourseInfo:
    """Validate the details collected when a journal is initialized.

    Student name and course are required. The title comes from the catalog
    unless one is given for a course outside it.
    """
    course_id = course_id.strip()
    student_name = student_name.strip()
    if not student_name or not course_id:
        raise ValidationError("Student Name and Course are required.")

    title = (course_title or "").strip() or COURSES.get(course_id, "")
    if not title:
        known = ", ".join(COURSES)
        raise ValidationError(f"Unknown course: '{course_id}'. Known courses: {known}")

    term = term.strip().capitalize()
    if term not in TERMS:
        raise ValidationError(f"Invalid term: '{term}'. Must be one of: {', '.join(TERMS)}")
    year_text = str(year if year is not None else date.today().year).strip()
    if not year_text.isdigit():
        raise ValidationError(f"Invalid year: '{year_text}'.")

    return CourseInfo(
        course_id=course_id,
        course_title=title,
        student_name=student_name,
        student_id=student_id.strip(),
        semester=f"{term} {year_text}",
    )
