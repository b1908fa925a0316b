"""
Classes, subjects, students, marks and result summaries.

Every write that touches marks recomputes the affected summary rows in the
same transaction, so a committed summary always matches its marks.
"""

import logging
import re

from result_portal.config import DEFAULT_MAX_CLASSES
from result_portal.db import DuplicateError, db_execute
from result_portal.grading import (
    SUBJECT_FLOOR_POLICY,
    calculate_summary,
    get_grade_config,
    subject_result,
    summary_entries,
)

REGISTER_NUMBER_MAX_LENGTH = 32
REGISTER_NUMBER_PATTERN = r'^[A-Za-z0-9/_-]+$'

DUPLICATE_REGISTER_MESSAGE = 'Register number already exists!'
NO_SUBJECTS_MESSAGE = 'Add at least one subject before adding students.'
NO_MARKS_MESSAGE = 'No marks found for this student. Please contact the administrator.'


def normalize_register_number(value):
    """Register numbers are stored trimmed and upper-cased."""
    return (value or '').strip().upper()


def is_valid_register_number(value):
    text = (value or '').strip()
    if not text or len(text) > REGISTER_NUMBER_MAX_LENGTH:
        return False
    return bool(re.fullmatch(REGISTER_NUMBER_PATTERN, text))


def normalize_person_name(value):
    """Collapse whitespace; letter case is kept as entered."""
    return ' '.join((value or '').split())


def normalize_subject_name(value):
    """Normalize subject names with leading-cap style."""
    text = ' '.join((value or '').strip().split())
    words = []
    for word in text.split(' '):
        if not word:
            continue
        if word.isupper() and len(word) <= 4:
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return ' '.join(words)


def class_sort_key(name):
    """Sort 'Class 2' before 'Class 10'."""
    text = (name or '').strip()
    m = re.search(r'(\d+)\s*$', text)
    if not m:
        return (text.lower(), 0)
    return (text[:m.start()].strip().lower(), int(m.group(1)))


def _summary_from_row(row):
    if row is None or row['grade'] is None:
        return None
    return {
        'total': int(row['total'] or 0),
        'max_total': int(row['max_total'] or 0),
        'percentage': float(row['percentage'] or 0),
        'grade': row['grade'],
        'status': row['status'],
    }


class ResultStore:
    """Result portal data access on top of a Database."""

    def __init__(self, database, grade_config=None, max_classes=DEFAULT_MAX_CLASSES):
        self.database = database
        self.grade_config = grade_config or get_grade_config()
        self.max_classes = max_classes

    # ==================== CLASSES ====================

    def list_classes(self):
        """All classes with their subject and student counts."""
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT c.id, c.name,
                          (SELECT COUNT(*) FROM subjects s WHERE s.class_id = c.id) AS subject_count,
                          (SELECT COUNT(*) FROM students st WHERE st.class_id = c.id) AS student_count
                   FROM classes c''',
            )
            rows = c.fetchall()
        classes = [
            {
                'id': row['id'],
                'name': row['name'],
                'subject_count': int(row['subject_count'] or 0),
                'student_count': int(row['student_count'] or 0),
            }
            for row in rows
        ]
        return sorted(classes, key=lambda item: class_sort_key(item['name']))

    def get_dashboard_stats(self):
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT (SELECT COUNT(*) FROM classes) AS classes,
                          (SELECT COUNT(*) FROM students) AS students,
                          (SELECT COUNT(*) FROM subjects) AS subjects''',
            )
            row = c.fetchone()
        if not row:
            return {'classes': 0, 'students': 0, 'subjects': 0}
        return {
            'classes': int(row['classes'] or 0),
            'students': int(row['students'] or 0),
            'subjects': int(row['subjects'] or 0),
        }

    def get_class(self, class_id):
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT id, name FROM classes WHERE id = ?', (class_id,))
            row = c.fetchone()
        if not row:
            return None
        return {'id': row['id'], 'name': row['name']}

    def create_classes(self, count):
        """Create 'Class 1'..'Class <count>', skipping names that exist. Returns rows added."""
        count = int(count)
        if not 1 <= count <= self.max_classes:
            raise ValueError(f"count must be between 1 and {self.max_classes}.")
        created = 0
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            for index in range(1, count + 1):
                db_execute(
                    c,
                    'INSERT INTO classes (name) VALUES (?) ON CONFLICT (name) DO NOTHING',
                    (f'Class {index}',),
                )
                created += max(0, int(c.rowcount or 0))
        logging.info("Created %s new class(es) for Class 1..Class %s", created, count)
        return created

    def delete_class(self, class_id):
        """Delete a class; subjects, students, marks and summaries go with it."""
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'DELETE FROM classes WHERE id = ?', (class_id,))
            deleted = int(c.rowcount or 0) > 0
        if deleted:
            logging.info("Deleted class %s with all subjects, students and marks", class_id)
        return deleted

    # ==================== SUBJECTS ====================

    def _subjects_with_cursor(self, c, class_id):
        db_execute(
            c,
            '''SELECT id, class_id, name, max_marks
               FROM subjects
               WHERE class_id = ?
               ORDER BY name, id''',
            (class_id,),
        )
        return [
            {'id': row['id'], 'class_id': row['class_id'], 'name': row['name'], 'max_marks': int(row['max_marks'])}
            for row in c.fetchall()
        ]

    def list_subjects(self, class_id):
        with self.database.connection() as conn:
            return self._subjects_with_cursor(conn.cursor(), class_id)

    def add_subject(self, class_id, name, max_marks):
        """Add a subject and refresh the class's summaries. Returns (subject_id, error)."""
        name = normalize_subject_name(name)
        if not name:
            return None, 'Subject name is required.'
        if self.grade_config['policy'] == SUBJECT_FLOOR_POLICY:
            max_marks = self.grade_config['marks_max']
        try:
            max_marks = int(max_marks)
        except (TypeError, ValueError):
            return None, 'Max marks must be a whole number.'
        if max_marks <= 0:
            return None, 'Max marks must be greater than zero.'

        try:
            with self.database.connection(commit=True) as conn:
                c = conn.cursor()
                db_execute(c, 'SELECT id FROM classes WHERE id = ?', (class_id,))
                if not c.fetchone():
                    return None, 'Class not found.'
                db_execute(
                    c,
                    '''INSERT INTO subjects (class_id, name, max_marks)
                       VALUES (?, ?, ?)
                       RETURNING id''',
                    (class_id, name, max_marks),
                )
                subject_id = c.fetchone()['id']
                self._recompute_class_with_cursor(c, class_id)
        except DuplicateError:
            return None, f'{name} already exists in this class.'
        logging.info("Added subject %s (%s, max %s) to class %s", subject_id, name, max_marks, class_id)
        return subject_id, None

    def delete_subject(self, subject_id):
        """Delete a subject (its marks cascade) and refresh the class's summaries."""
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'DELETE FROM subjects WHERE id = ? RETURNING class_id', (subject_id,))
            row = c.fetchone()
            if not row:
                return None
            class_id = row['class_id']
            self._recompute_class_with_cursor(c, class_id)
        logging.info("Deleted subject %s from class %s", subject_id, class_id)
        return class_id

    # ==================== STUDENTS & MARKS ====================

    def list_students(self, class_id):
        """Students of a class with their stored summary (None when absent)."""
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT st.id, st.name, st.register_number, st.father_name, st.photo_url,
                          rs.total, rs.max_total, rs.percentage, rs.grade, rs.status
                   FROM students st
                   LEFT JOIN result_summary rs ON rs.student_id = st.id
                   WHERE st.class_id = ?
                   ORDER BY st.name, st.id''',
                (class_id,),
            )
            rows = c.fetchall()
        return [
            {
                'id': row['id'],
                'name': row['name'],
                'register_number': row['register_number'],
                'father_name': row['father_name'],
                'photo_url': row['photo_url'],
                'summary': _summary_from_row(row),
            }
            for row in rows
        ]

    def get_student(self, student_id):
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT st.id, st.class_id, st.name, st.register_number, st.father_name, st.photo_url,
                          c.name AS class_name
                   FROM students st
                   JOIN classes c ON c.id = st.class_id
                   WHERE st.id = ?''',
                (student_id,),
            )
            row = c.fetchone()
        if not row:
            return None
        return dict(row)

    def _marks_with_cursor(self, c, student_id):
        db_execute(c, 'SELECT subject_id, marks_obtained FROM marks WHERE student_id = ?', (student_id,))
        return {row['subject_id']: int(row['marks_obtained']) for row in c.fetchall()}

    def get_student_marks(self, student_id):
        """Marks of one student as {subject_id: marks_obtained}."""
        with self.database.connection() as conn:
            return self._marks_with_cursor(conn.cursor(), student_id)

    def _upsert_mark_with_cursor(self, c, student_id, subject_id, marks_obtained):
        db_execute(
            c,
            '''INSERT INTO marks (student_id, subject_id, marks_obtained)
               VALUES (?, ?, ?)
               ON CONFLICT (student_id, subject_id) DO UPDATE SET
                  marks_obtained = excluded.marks_obtained,
                  updated_at = CURRENT_TIMESTAMP''',
            (student_id, subject_id, int(marks_obtained)),
        )

    def _upsert_summary_with_cursor(self, c, student_id, subjects, marks_by_subject):
        summary = calculate_summary(summary_entries(subjects, marks_by_subject), self.grade_config)
        db_execute(
            c,
            '''INSERT INTO result_summary (student_id, total, max_total, percentage, grade, status)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (student_id) DO UPDATE SET
                  total = excluded.total,
                  max_total = excluded.max_total,
                  percentage = excluded.percentage,
                  grade = excluded.grade,
                  status = excluded.status,
                  updated_at = CURRENT_TIMESTAMP''',
            (
                student_id,
                summary['total'],
                summary['max_total'],
                summary['percentage'],
                summary['grade'],
                summary['status'],
            ),
        )
        return summary

    def add_student(self, class_id, name, register_number, marks, father_name=None, photo_url=None):
        """
        Insert a student with one mark per class subject and their summary.

        Returns (student_id, error). Nothing is written when an error is returned.
        """
        name = normalize_person_name(name)
        register_number = normalize_register_number(register_number)
        father_name = normalize_person_name(father_name) or None
        photo_url = (photo_url or '').strip() or None
        if not name or not register_number:
            return None, 'Student name and register number are required.'
        if not is_valid_register_number(register_number):
            return None, 'Register number may contain only letters, numbers, "/", "_" and "-".'
        marks = marks or {}

        try:
            with self.database.connection(commit=True) as conn:
                c = conn.cursor()
                subjects = self._subjects_with_cursor(c, class_id)
                if not subjects:
                    return None, NO_SUBJECTS_MESSAGE
                db_execute(c, 'SELECT id FROM students WHERE register_number = ?', (register_number,))
                if c.fetchone():
                    return None, DUPLICATE_REGISTER_MESSAGE
                db_execute(
                    c,
                    '''INSERT INTO students (class_id, name, register_number, father_name, photo_url)
                       VALUES (?, ?, ?, ?, ?)
                       RETURNING id''',
                    (class_id, name, register_number, father_name, photo_url),
                )
                student_id = c.fetchone()['id']
                marks_by_subject = {}
                for subject in subjects:
                    value = int(marks.get(subject['id'], 0) or 0)
                    marks_by_subject[subject['id']] = value
                    self._upsert_mark_with_cursor(c, student_id, subject['id'], value)
                summary = self._upsert_summary_with_cursor(c, student_id, subjects, marks_by_subject)
        except DuplicateError:
            return None, DUPLICATE_REGISTER_MESSAGE
        logging.info(
            "Added student %s (%s) to class %s: %s %s",
            student_id, register_number, class_id, summary['grade'], summary['status'],
        )
        return student_id, None

    def update_marks(self, student_id, marks):
        """
        Upsert the given marks and recompute the summary.

        Subjects missing from `marks` keep their stored value. Returns the new
        summary, or None when the student does not exist.
        """
        marks = marks or {}
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT id, class_id FROM students WHERE id = ?', (student_id,))
            row = c.fetchone()
            if not row:
                return None
            subjects = self._subjects_with_cursor(c, row['class_id'])
            marks_by_subject = self._marks_with_cursor(c, student_id)
            for subject in subjects:
                value = int(marks.get(subject['id'], marks_by_subject.get(subject['id'], 0)) or 0)
                marks_by_subject[subject['id']] = value
                self._upsert_mark_with_cursor(c, student_id, subject['id'], value)
            summary = self._upsert_summary_with_cursor(c, student_id, subjects, marks_by_subject)
        logging.info("Updated marks for student %s: %s %s", student_id, summary['grade'], summary['status'])
        return summary

    def delete_student(self, student_id):
        """Delete a student; marks and summary cascade."""
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'DELETE FROM students WHERE id = ?', (student_id,))
            deleted = int(c.rowcount or 0) > 0
        if deleted:
            logging.info("Deleted student %s", student_id)
        return deleted

    # ==================== SUMMARIES ====================

    def _recompute_class_with_cursor(self, c, class_id):
        subjects = self._subjects_with_cursor(c, class_id)
        db_execute(c, 'SELECT id FROM students WHERE class_id = ?', (class_id,))
        student_ids = [row['id'] for row in c.fetchall()]
        if not student_ids:
            return 0
        db_execute(
            c,
            '''SELECT m.student_id, m.subject_id, m.marks_obtained
               FROM marks m
               JOIN students st ON st.id = m.student_id
               WHERE st.class_id = ?''',
            (class_id,),
        )
        marks_by_student = {}
        for row in c.fetchall():
            marks_by_student.setdefault(row['student_id'], {})[row['subject_id']] = int(row['marks_obtained'])
        for student_id in student_ids:
            self._upsert_summary_with_cursor(c, student_id, subjects, marks_by_student.get(student_id, {}))
        return len(student_ids)

    def recompute_summary(self, student_id):
        """Rebuild one student's summary from raw marks."""
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT class_id FROM students WHERE id = ?', (student_id,))
            row = c.fetchone()
            if not row:
                return None
            subjects = self._subjects_with_cursor(c, row['class_id'])
            marks_by_subject = self._marks_with_cursor(c, student_id)
            return self._upsert_summary_with_cursor(c, student_id, subjects, marks_by_subject)

    def recompute_class_summaries(self, class_id):
        """Rebuild every summary in a class. Returns the number of students."""
        with self.database.connection(commit=True) as conn:
            count = self._recompute_class_with_cursor(conn.cursor(), class_id)
        logging.info("Recomputed %s summaries for class %s", count, class_id)
        return count

    def _summary_or_computed(self, stored, subjects, marks_by_subject):
        if stored is not None:
            return stored, False
        return calculate_summary(summary_entries(subjects, marks_by_subject), self.grade_config), True

    # ==================== EXPORT & LOOKUP ====================

    def export_class_results(self, class_id):
        """Header and rows for a class marksheet export."""
        with self.database.connection() as conn:
            c = conn.cursor()
            subjects = self._subjects_with_cursor(c, class_id)
            db_execute(
                c,
                '''SELECT st.id, st.name, st.register_number,
                          rs.total, rs.max_total, rs.percentage, rs.grade, rs.status
                   FROM students st
                   LEFT JOIN result_summary rs ON rs.student_id = st.id
                   WHERE st.class_id = ?
                   ORDER BY st.name, st.id''',
                (class_id,),
            )
            students = c.fetchall()
            db_execute(
                c,
                '''SELECT m.student_id, m.subject_id, m.marks_obtained
                   FROM marks m
                   JOIN students st ON st.id = m.student_id
                   WHERE st.class_id = ?''',
                (class_id,),
            )
            marks_by_student = {}
            for row in c.fetchall():
                marks_by_student.setdefault(row['student_id'], {})[row['subject_id']] = int(row['marks_obtained'])

        header = ['Register Number', 'Name']
        header.extend(f"{s['name']} (/{s['max_marks']})" for s in subjects)
        header.extend(['Total', 'Max Total', 'Percentage', 'Grade', 'Status'])
        rows = []
        for student in students:
            marks_by_subject = marks_by_student.get(student['id'], {})
            summary, _computed = self._summary_or_computed(_summary_from_row(student), subjects, marks_by_subject)
            row = [student['register_number'], student['name']]
            row.extend(marks_by_subject.get(s['id'], 0) for s in subjects)
            row.extend([
                summary['total'],
                summary['max_total'],
                f"{summary['percentage']:.2f}",
                summary['grade'],
                summary['status'],
            ])
            rows.append(row)
        return header, rows

    def lookup_result(self, register_number):
        """
        Public marksheet for one register number, or None when unknown.

        A missing summary row is computed on the fly from marks and flagged
        with computed=True; a student with neither gets an `error` message.
        """
        register_number = normalize_register_number(register_number)
        if not register_number:
            return None
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT st.id, st.class_id, st.name, st.register_number, st.father_name, st.photo_url,
                          c.name AS class_name
                   FROM students st
                   JOIN classes c ON c.id = st.class_id
                   WHERE st.register_number = ?''',
                (register_number,),
            )
            student = c.fetchone()
            if not student:
                return None
            subjects = self._subjects_with_cursor(c, student['class_id'])
            marks_by_subject = self._marks_with_cursor(c, student['id'])
            db_execute(
                c,
                '''SELECT total, max_total, percentage, grade, status
                   FROM result_summary
                   WHERE student_id = ?''',
                (student['id'],),
            )
            stored = _summary_from_row(c.fetchone())

        result = {
            'student': {
                'name': student['name'],
                'register_number': student['register_number'],
                'father_name': student['father_name'],
                'photo_url': student['photo_url'],
                'class_name': student['class_name'],
            },
            'marks': [],
            'summary': None,
            'computed': False,
            'error': None,
        }
        for subject in subjects:
            obtained = marks_by_subject.get(subject['id'], 0)
            entry = {
                'subject': subject['name'],
                'max_marks': subject['max_marks'],
                'marks_obtained': obtained,
            }
            entry.update(subject_result(obtained, subject['max_marks'], self.grade_config))
            result['marks'].append(entry)
        if stored is None and not marks_by_subject:
            result['error'] = NO_MARKS_MESSAGE
            return result
        if stored is None:
            logging.warning("Result summary missing for %s; computing from marks.", register_number)
        result['summary'], result['computed'] = self._summary_or_computed(stored, subjects, marks_by_subject)
        return result
