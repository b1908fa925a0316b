"""
Result summary calculation.

Turns one student's per-subject marks into the cached summary row:
total, max total, percentage, letter grade and Pass/Fail status.
Two grading policies exist; a deployment picks exactly one.
"""

PERCENTAGE_POLICY = 'percentage'
SUBJECT_FLOOR_POLICY = 'subject_floor'
GRADING_POLICIES = (PERCENTAGE_POLICY, SUBJECT_FLOOR_POLICY)

DEFAULT_PASS_MARK = 18
DEFAULT_MARKS_MAX = 50

# Inclusive lower bounds, highest band first.
PERCENTAGE_GRADE_BANDS = (
    (90, 'A+'),
    (80, 'A'),
    (70, 'B'),
    (60, 'C'),
)
PERCENTAGE_FAIL_GRADE = 'F'

AVERAGE_GRADE_BANDS = (
    (45, 'A+'),
    (40, 'A'),
    (35, 'B+'),
    (30, 'B'),
    (25, 'C+'),
)
AVERAGE_LOWEST_PASS_GRADE = 'C'
AVERAGE_FAIL_GRADE = 'D'


def get_grade_config(policy=PERCENTAGE_POLICY, pass_mark=DEFAULT_PASS_MARK, marks_max=DEFAULT_MARKS_MAX):
    """Build the grading configuration used by calculate_summary."""
    policy = (policy or PERCENTAGE_POLICY).strip().lower()
    if policy not in GRADING_POLICIES:
        raise ValueError(f"Unknown grading policy: {policy!r}")
    pass_mark = int(pass_mark)
    marks_max = int(marks_max)
    if marks_max <= 0:
        raise ValueError("marks_max must be positive.")
    if not 0 <= pass_mark <= marks_max:
        raise ValueError("pass_mark must be between 0 and marks_max.")
    fail_grade = PERCENTAGE_FAIL_GRADE if policy == PERCENTAGE_POLICY else AVERAGE_FAIL_GRADE
    return {
        'policy': policy,
        'pass_mark': pass_mark,
        'marks_max': marks_max,
        'fail_grade': fail_grade,
    }


def grade_from_percentage(percentage):
    """Letter grade from the overall percentage."""
    percentage = float(percentage or 0)
    for minimum, grade in PERCENTAGE_GRADE_BANDS:
        if percentage >= minimum:
            return grade
    return PERCENTAGE_FAIL_GRADE


def grade_from_average(average, pass_mark=DEFAULT_PASS_MARK):
    """Letter grade from the average mark per subject."""
    average = float(average or 0)
    for minimum, grade in AVERAGE_GRADE_BANDS:
        if average >= minimum:
            return grade
    if average >= pass_mark:
        return AVERAGE_LOWEST_PASS_GRADE
    return AVERAGE_FAIL_GRADE


def status_from_grade(grade, cfg):
    return 'Fail' if grade == cfg['fail_grade'] else 'Pass'


def subject_result(marks_obtained, max_marks, cfg=None):
    """Grade and Pass/Fail for a single subject on the marksheet."""
    cfg = cfg or get_grade_config()
    marks_obtained = int(marks_obtained or 0)
    if cfg['policy'] == SUBJECT_FLOOR_POLICY:
        grade = grade_from_average(marks_obtained, cfg['pass_mark'])
    else:
        max_marks = int(max_marks or 0)
        percentage = (marks_obtained * 100.0 / max_marks) if max_marks > 0 else 0.0
        grade = grade_from_percentage(percentage)
    return {'grade': grade, 'status': status_from_grade(grade, cfg)}


def summary_entries(subjects, marks_by_subject):
    """
    Ordered (marks_obtained, max_marks) pairs for a student.

    `subjects` are the subject rows of the student's class; a subject with
    no recorded mark counts as 0.
    """
    marks_by_subject = marks_by_subject or {}
    entries = []
    for subject in subjects:
        obtained = marks_by_subject.get(subject['id'], 0)
        entries.append((int(obtained or 0), int(subject['max_marks'] or 0)))
    return entries


def calculate_summary(entries, cfg=None):
    """
    Compute the summary for a list of (marks_obtained, max_marks) pairs.

    Pure: the caller persists the result. Marks are not range-checked here.
    """
    cfg = cfg or get_grade_config()
    entries = list(entries)
    marks = [int(obtained) for obtained, _max in entries]
    total = sum(marks)

    if cfg['policy'] == SUBJECT_FLOOR_POLICY:
        max_total = len(marks) * cfg['marks_max']
    else:
        max_total = sum(int(max_marks) for _obtained, max_marks in entries)

    raw_percentage = (total * 100.0 / max_total) if max_total > 0 else 0.0

    if cfg['policy'] == SUBJECT_FLOOR_POLICY:
        if any(mark < cfg['pass_mark'] for mark in marks):
            grade = AVERAGE_FAIL_GRADE
        else:
            average = (total / len(marks)) if marks else 0.0
            grade = grade_from_average(average, cfg['pass_mark'])
    else:
        grade = grade_from_percentage(raw_percentage)

    return {
        'total': total,
        'max_total': max_total,
        'percentage': round(raw_percentage, 2),
        'grade': grade,
        'status': status_from_grade(grade, cfg),
    }
