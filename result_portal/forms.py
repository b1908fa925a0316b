from flask_wtf import FlaskForm
from wtforms import IntegerField, PasswordField, SelectField, StringField, validators

from result_portal.store import REGISTER_NUMBER_MAX_LENGTH, REGISTER_NUMBER_PATTERN

SUBJECT_MAX_MARKS_LIMIT = 1000

_register_number_validators = [
    validators.InputRequired(message='Please enter a Register Number.'),
    validators.Length(max=REGISTER_NUMBER_MAX_LENGTH),
    validators.Regexp(
        REGISTER_NUMBER_PATTERN,
        message='Register number may contain only letters, numbers, "/", "_" and "-".',
    ),
]


class LoginForm(FlaskForm):
    email = StringField('Email', [validators.InputRequired(), validators.Length(max=254)])
    password = PasswordField('Password', [validators.InputRequired()])


class ResultLookupForm(FlaskForm):
    register_number = StringField('Register Number', _register_number_validators)


class CreateClassesForm(FlaskForm):
    count = SelectField('Classes', coerce=int)

    def __init__(self, *args, max_classes=12, **kwargs):
        super().__init__(*args, **kwargs)
        self.count.choices = [(i, f'Class 1 to Class {i}') for i in range(1, max_classes + 1)]


class SubjectForm(FlaskForm):
    name = StringField('Subject Name', [validators.InputRequired(), validators.Length(max=100)])
    max_marks = IntegerField(
        'Max Marks',
        [validators.InputRequired(), validators.NumberRange(min=1, max=SUBJECT_MAX_MARKS_LIMIT)],
        default=100,
    )


class StudentForm(FlaskForm):
    name = StringField('Student Name', [validators.InputRequired(), validators.Length(max=120)])
    register_number = StringField('Register Number', _register_number_validators)
    father_name = StringField("Father's Name", [validators.Optional(), validators.Length(max=120)])
    photo_url = StringField('Photo URL', [validators.Optional(), validators.Length(max=500), validators.URL()])


def marks_field_name(subject_id):
    return f'marks-{subject_id}'


def parse_marks_form(formdata, subjects):
    """
    Read one integer mark per subject from submitted form data.

    Blank fields count as 0. Returns (marks, errors) where marks maps
    subject id to the value and errors lists one message per bad field.
    """
    marks = {}
    errors = []
    for subject in subjects:
        raw = (formdata.get(marks_field_name(subject['id'])) or '').strip()
        if not raw:
            marks[subject['id']] = 0
            continue
        try:
            value = int(raw)
        except ValueError:
            errors.append(f"{subject['name']}: marks must be a whole number.")
            continue
        if not 0 <= value <= int(subject['max_marks']):
            errors.append(f"{subject['name']}: marks must be between 0 and {subject['max_marks']}.")
            continue
        marks[subject['id']] = value
    return marks, errors
