import pytest

from conftest import FakeCursor, FakeDatabase
from result_portal.db import DuplicateError
from result_portal.grading import SUBJECT_FLOOR_POLICY, get_grade_config
from result_portal.store import (
    DUPLICATE_REGISTER_MESSAGE,
    NO_MARKS_MESSAGE,
    NO_SUBJECTS_MESSAGE,
    ResultStore,
    class_sort_key,
    is_valid_register_number,
    normalize_person_name,
    normalize_register_number,
    normalize_subject_name,
)

SUBJECTS_SQL = "SELECT id, class_id, name, max_marks"
MARKS_SQL = "SELECT subject_id, marks_obtained FROM marks WHERE student_id"
CLASS_MARKS_SQL = "FROM marks m"
LOOKUP_SQL = "WHERE st.register_number"
SUMMARY_SQL = "SELECT total, max_total, percentage, grade, status"
REGISTER_CHECK_SQL = "SELECT id FROM students WHERE register_number"

SUBJECTS = [
    {"id": 1, "class_id": 5, "name": "English", "max_marks": 50},
    {"id": 2, "class_id": 5, "name": "Maths", "max_marks": 50},
]


def make_store(responses=None, raise_on=None, grade_config=None):
    db = FakeDatabase(FakeCursor(responses, raise_on))
    return ResultStore(db, grade_config=grade_config), db


def test_normalize_register_number_trims_and_uppercases():
    assert normalize_register_number("  reg2024001 ") == "REG2024001"
    assert normalize_register_number(None) == ""


def test_is_valid_register_number():
    assert is_valid_register_number("REG/2024-01_a")
    assert not is_valid_register_number("REG 2024")
    assert not is_valid_register_number("")
    assert not is_valid_register_number("R" * 33)


def test_name_normalizers():
    assert normalize_person_name("  mary   o-neil ") == "mary o-neil"
    assert normalize_person_name("Sean  McDonald") == "Sean McDonald"
    assert normalize_person_name("O'Brien") == "O'Brien"
    assert normalize_person_name(None) == ""
    assert normalize_subject_name("  social  SCIENCE ") == "Social Science"
    assert normalize_subject_name("ICT basics") == "ICT Basics"


def test_class_sort_key_orders_numerically():
    names = ["Class 10", "Class 2", "Class 1"]
    assert sorted(names, key=class_sort_key) == ["Class 1", "Class 2", "Class 10"]


def test_list_classes_sorts_and_counts():
    store, _db = make_store([
        ("FROM classes c", [
            {"id": 3, "name": "Class 10", "subject_count": 2, "student_count": None},
            {"id": 1, "name": "Class 2", "subject_count": 0, "student_count": 4},
        ]),
    ])
    classes = store.list_classes()
    assert [item["name"] for item in classes] == ["Class 2", "Class 10"]
    assert classes[1]["student_count"] == 0
    assert classes[0]["student_count"] == 4


def test_create_classes_skips_existing_names():
    existing = {"Class 1", "Class 2"}

    def insert(query, params):
        return [] if params[0] in existing else [{}]

    store, db = make_store([("INSERT INTO classes", insert)])
    assert store.create_classes(4) == 2
    inserted = [params[0] for _q, params in db.cursor.queries("INSERT INTO classes")]
    assert inserted == ["Class 1", "Class 2", "Class 3", "Class 4"]
    assert all("ON CONFLICT (name) DO NOTHING" in q for q, _p in db.cursor.queries("INSERT INTO classes"))
    assert db.conn.commits == 1


@pytest.mark.parametrize("count", [0, 13, -1])
def test_create_classes_rejects_out_of_range(count):
    store, db = make_store()
    with pytest.raises(ValueError):
        store.create_classes(count)
    assert db.cursor.executed == []


def test_delete_class_is_single_statement():
    store, db = make_store([("DELETE FROM classes", [], 1)])
    assert store.delete_class(5) is True
    assert len(db.cursor.executed) == 1
    assert db.cursor.executed[0][1] == (5,)


def test_delete_missing_class_returns_false():
    store, _db = make_store([("DELETE FROM classes", [], 0)])
    assert store.delete_class(99) is False


def test_add_student_writes_marks_and_summary():
    store, db = make_store([
        (SUBJECTS_SQL, SUBJECTS),
        ("INSERT INTO students", [{"id": 7}]),
    ])
    student_id, err = store.add_student(5, " asha  k ", " reg2024001 ", {1: 45, 2: 38})

    assert err is None
    assert student_id == 7
    insert_params = db.cursor.queries("INSERT INTO students")[0][1]
    assert insert_params == (5, "asha k", "REG2024001", None, None)
    mark_params = [params for _q, params in db.cursor.queries("INSERT INTO marks")]
    assert mark_params == [(7, 1, 45), (7, 2, 38)]
    summary_params = db.cursor.queries("INSERT INTO result_summary")[0][1]
    assert summary_params == (7, 83, 100, 83.0, "A", "Pass")
    assert db.conn.commits == 1


def test_add_student_missing_marks_default_to_zero():
    store, db = make_store([
        (SUBJECTS_SQL, SUBJECTS),
        ("INSERT INTO students", [{"id": 8}]),
    ])
    _student_id, err = store.add_student(5, "Ravi", "REG2", {1: 40})
    assert err is None
    mark_params = [params for _q, params in db.cursor.queries("INSERT INTO marks")]
    assert mark_params == [(8, 1, 40), (8, 2, 0)]


def test_add_student_rejects_duplicate_register_number():
    store, db = make_store([
        (SUBJECTS_SQL, SUBJECTS),
        (REGISTER_CHECK_SQL, [{"id": 3}]),
    ])
    student_id, err = store.add_student(5, "Ravi", "reg2024001", {1: 10, 2: 10})
    assert student_id is None
    assert err == DUPLICATE_REGISTER_MESSAGE
    assert db.cursor.queries(REGISTER_CHECK_SQL)[0][1] == ("REG2024001",)
    assert db.cursor.queries("INSERT INTO") == []


def test_add_student_maps_unique_violation_race():
    store, db = make_store(
        [(SUBJECTS_SQL, SUBJECTS)],
        raise_on={"INSERT INTO students": DuplicateError("duplicate key")},
    )
    student_id, err = store.add_student(5, "Ravi", "REG9", {})
    assert student_id is None
    assert err == DUPLICATE_REGISTER_MESSAGE
    assert db.conn.commits == 0


def test_add_student_requires_subjects():
    store, db = make_store()
    student_id, err = store.add_student(5, "Ravi", "REG9", {})
    assert student_id is None
    assert err == NO_SUBJECTS_MESSAGE
    assert db.cursor.queries("INSERT INTO") == []


def test_add_student_rejects_bad_register_number_without_db():
    store, db = make_store()
    _student_id, err = store.add_student(5, "Ravi", "REG 9", {})
    assert err
    assert db.cursor.executed == []


def test_update_marks_keeps_stored_values_for_missing_subjects():
    store, db = make_store([
        ("SELECT id, class_id FROM students WHERE id", [{"id": 7, "class_id": 5}]),
        (SUBJECTS_SQL, SUBJECTS),
        (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 20}, {"subject_id": 2, "marks_obtained": 30}]),
    ])
    summary = store.update_marks(7, {1: 50})
    assert summary["total"] == 80
    assert summary["percentage"] == 80.0
    assert summary["grade"] == "A"
    mark_params = [params for _q, params in db.cursor.queries("INSERT INTO marks")]
    assert mark_params == [(7, 1, 50), (7, 2, 30)]
    assert db.cursor.queries("INSERT INTO result_summary")[0][1][1:] == (80, 100, 80.0, "A", "Pass")


def test_update_marks_unknown_student():
    store, db = make_store()
    assert store.update_marks(404, {1: 10}) is None
    assert db.cursor.queries("INSERT INTO") == []


def test_add_subject_recomputes_class_summaries():
    store, db = make_store([
        ("SELECT id FROM classes WHERE id", [{"id": 5}]),
        ("INSERT INTO subjects", [{"id": 3}]),
        (SUBJECTS_SQL, SUBJECTS + [{"id": 3, "class_id": 5, "name": "Science", "max_marks": 100}]),
        ("SELECT id FROM students WHERE class_id", [{"id": 7}, {"id": 8}]),
        (CLASS_MARKS_SQL, [
            {"student_id": 7, "subject_id": 1, "marks_obtained": 50},
            {"student_id": 7, "subject_id": 2, "marks_obtained": 50},
        ]),
    ])
    subject_id, err = store.add_subject(5, "science", 100)
    assert err is None
    assert subject_id == 3
    assert db.cursor.queries("INSERT INTO subjects")[0][1] == (5, "Science", 100)
    summaries = {params[0]: params for _q, params in db.cursor.queries("INSERT INTO result_summary")}
    # The new subject counts as 0 for existing students.
    assert summaries[7][1:] == (100, 200, 50.0, "F", "Fail")
    assert summaries[8][1:3] == (0, 200)


def test_add_subject_forces_fixed_max_marks_under_subject_floor():
    cfg = get_grade_config(SUBJECT_FLOOR_POLICY, pass_mark=18, marks_max=50)
    store, db = make_store(
        [("SELECT id FROM classes WHERE id", [{"id": 5}]), ("INSERT INTO subjects", [{"id": 3}])],
        grade_config=cfg,
    )
    _subject_id, err = store.add_subject(5, "Maths", 100)
    assert err is None
    assert db.cursor.queries("INSERT INTO subjects")[0][1] == (5, "Maths", 50)


def test_add_subject_unknown_class():
    store, db = make_store()
    subject_id, err = store.add_subject(99, "Maths", 100)
    assert subject_id is None
    assert err == "Class not found."
    assert db.cursor.queries("INSERT INTO subjects") == []


def test_add_subject_duplicate_name():
    store, _db = make_store(
        [("SELECT id FROM classes WHERE id", [{"id": 5}])],
        raise_on={"INSERT INTO subjects": DuplicateError("duplicate key")},
    )
    subject_id, err = store.add_subject(5, "maths", 100)
    assert subject_id is None
    assert err == "Maths already exists in this class."


def test_add_subject_rejects_non_positive_max_marks():
    store, db = make_store()
    _subject_id, err = store.add_subject(5, "Maths", 0)
    assert err
    assert db.cursor.executed == []


def test_delete_subject_returns_class_and_recomputes():
    store, db = make_store([
        ("DELETE FROM subjects", [{"class_id": 5}]),
        (SUBJECTS_SQL, SUBJECTS[:1]),
        ("SELECT id FROM students WHERE class_id", [{"id": 7}]),
        (CLASS_MARKS_SQL, [{"student_id": 7, "subject_id": 1, "marks_obtained": 45}]),
    ])
    assert store.delete_subject(2) == 5
    summary_params = db.cursor.queries("INSERT INTO result_summary")[0][1]
    assert summary_params == (7, 45, 50, 90.0, "A+", "Pass")


def test_delete_subject_missing():
    store, db = make_store()
    assert store.delete_subject(2) is None
    assert db.cursor.queries("INSERT INTO result_summary") == []


def test_list_students_attaches_summary():
    store, _db = make_store([
        ("LEFT JOIN result_summary", [
            {"id": 7, "name": "Asha", "register_number": "R1", "father_name": None, "photo_url": None,
             "total": 83, "max_total": 100, "percentage": 83.0, "grade": "A", "status": "Pass"},
            {"id": 8, "name": "Ravi", "register_number": "R2", "father_name": None, "photo_url": None,
             "total": None, "max_total": None, "percentage": None, "grade": None, "status": None},
        ]),
    ])
    students = store.list_students(5)
    assert students[0]["summary"]["grade"] == "A"
    assert students[1]["summary"] is None


def test_lookup_result_uses_stored_summary():
    store, db = make_store([
        (LOOKUP_SQL, [{"id": 7, "class_id": 5, "name": "Asha", "register_number": "REG1",
                       "father_name": "Kumar", "photo_url": None, "class_name": "Class 5"}]),
        (SUBJECTS_SQL, SUBJECTS),
        (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 45}, {"subject_id": 2, "marks_obtained": 38}]),
        (SUMMARY_SQL, [{"total": 83, "max_total": 100, "percentage": 83.0, "grade": "A", "status": "Pass"}]),
    ])
    result = store.lookup_result(" reg1 ")
    assert db.cursor.queries(LOOKUP_SQL)[0][1] == ("REG1",)
    assert result["computed"] is False
    assert result["error"] is None
    assert result["student"]["class_name"] == "Class 5"
    assert result["marks"] == [
        {"subject": "English", "max_marks": 50, "marks_obtained": 45, "grade": "A+", "status": "Pass"},
        {"subject": "Maths", "max_marks": 50, "marks_obtained": 38, "grade": "B", "status": "Pass"},
    ]
    assert result["summary"]["grade"] == "A"


def test_lookup_result_computes_missing_summary():
    store, db = make_store([
        (LOOKUP_SQL, [{"id": 7, "class_id": 5, "name": "Asha", "register_number": "REG1",
                       "father_name": None, "photo_url": None, "class_name": "Class 5"}]),
        (SUBJECTS_SQL, SUBJECTS),
        (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 45}]),
    ])
    result = store.lookup_result("REG1")
    assert result["computed"] is True
    assert result["summary"] == {
        "total": 45, "max_total": 100, "percentage": 45.0, "grade": "F", "status": "Fail",
    }
    assert result["marks"][1]["marks_obtained"] == 0
    # Read-only: nothing is written back.
    assert db.cursor.queries("INSERT INTO") == []


def test_lookup_result_without_marks_reports_error():
    store, _db = make_store([
        (LOOKUP_SQL, [{"id": 7, "class_id": 5, "name": "Asha", "register_number": "REG1",
                       "father_name": None, "photo_url": None, "class_name": "Class 5"}]),
        (SUBJECTS_SQL, SUBJECTS),
    ])
    result = store.lookup_result("REG1")
    assert result["summary"] is None
    assert result["error"] == NO_MARKS_MESSAGE


def test_lookup_result_unknown_register_number():
    store, db = make_store()
    assert store.lookup_result("NOPE") is None
    assert store.lookup_result("   ") is None
    assert len(db.cursor.executed) == 1


def test_export_class_results():
    store, _db = make_store([
        (SUBJECTS_SQL, SUBJECTS),
        ("LEFT JOIN result_summary", [
            {"id": 7, "name": "Asha", "register_number": "R1",
             "total": 83, "max_total": 100, "percentage": 83.0, "grade": "A", "status": "Pass"},
            {"id": 8, "name": "Ravi", "register_number": "R2",
             "total": None, "max_total": None, "percentage": None, "grade": None, "status": None},
        ]),
        (CLASS_MARKS_SQL, [
            {"student_id": 7, "subject_id": 1, "marks_obtained": 45},
            {"student_id": 7, "subject_id": 2, "marks_obtained": 38},
            {"student_id": 8, "subject_id": 1, "marks_obtained": 30},
        ]),
    ])
    header, rows = store.export_class_results(5)
    assert header == [
        "Register Number", "Name", "English (/50)", "Maths (/50)",
        "Total", "Max Total", "Percentage", "Grade", "Status",
    ]
    assert rows[0] == ["R1", "Asha", 45, 38, 83, 100, "83.00", "A", "Pass"]
    assert rows[1] == ["R2", "Ravi", 30, 0, 30, 100, "30.00", "F", "Fail"]


def test_recompute_summary_rebuilds_from_marks():
    store, db = make_store([
        ("SELECT class_id FROM students WHERE id", [{"class_id": 5}]),
        (SUBJECTS_SQL, SUBJECTS),
        (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 30}, {"subject_id": 2, "marks_obtained": 35}]),
    ])
    summary = store.recompute_summary(7)
    assert summary == {"total": 65, "max_total": 100, "percentage": 65.0, "grade": "C", "status": "Pass"}
    assert db.cursor.queries("INSERT INTO result_summary")[0][1] == (7, 65, 100, 65.0, "C", "Pass")
    assert db.cursor.queries("INSERT INTO marks") == []


def test_recompute_class_summaries_counts_students():
    store, db = make_store([
        (SUBJECTS_SQL, SUBJECTS),
        ("SELECT id FROM students WHERE class_id", [{"id": 7}, {"id": 8}, {"id": 9}]),
    ])
    assert store.recompute_class_summaries(5) == 3
    assert len(db.cursor.queries("INSERT INTO result_summary")) == 3
    assert db.conn.commits == 1


def test_lookup_result_grades_each_subject():
    store, _db = make_store([
        (LOOKUP_SQL, [{"id": 7, "class_id": 5, "name": "Asha", "register_number": "2024/001",
                       "father_name": None, "photo_url": None, "class_name": "Class 5"}]),
        (SUBJECTS_SQL, SUBJECTS),
        (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 30}, {"subject_id": 2, "marks_obtained": 29}]),
    ])
    result = store.lookup_result("2024/001")
    assert [(m["grade"], m["status"]) for m in result["marks"]] == [("C", "Pass"), ("F", "Fail")]


def test_lookup_result_grades_each_subject_against_pass_mark():
    cfg = get_grade_config(SUBJECT_FLOOR_POLICY, pass_mark=18, marks_max=50)
    store, _db = make_store(
        [
            (LOOKUP_SQL, [{"id": 7, "class_id": 5, "name": "Asha", "register_number": "REG1",
                           "father_name": None, "photo_url": None, "class_name": "Class 5"}]),
            (SUBJECTS_SQL, SUBJECTS),
            (MARKS_SQL, [{"subject_id": 1, "marks_obtained": 18}, {"subject_id": 2, "marks_obtained": 17}]),
        ],
        grade_config=cfg,
    )
    result = store.lookup_result("REG1")
    assert [(m["grade"], m["status"]) for m in result["marks"]] == [("C", "Pass"), ("D", "Fail")]
    assert result["summary"]["status"] == "Fail"
