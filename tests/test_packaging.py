import re
from pathlib import Path

import django

PYPROJECT = Path(__file__).resolve().parent.parent / 'pyproject.toml'


def test_django_floor_supports_check_constraint_condition():
    # CheckConstraint(condition=...) appeared in Django 5.1
    assert re.search(r'"Django>=5\.1', PYPROJECT.read_text())
    assert django.VERSION >= (5, 1)


def test_readme_is_not_an_internal_document():
    match = re.search(r'^readme\s*=\s*"([^"]+)"', PYPROJECT.read_text(), re.MULTILINE)
    assert match is None or (PYPROJECT.parent / match.group(1)).name.lower().startswith('readme')
