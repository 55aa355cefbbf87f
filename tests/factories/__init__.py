"""Test data factories for the challenge phase engine."""

from tests.factories.phase_factory import (
    make_definitions,
    make_entry,
    make_phase,
    make_template,
    make_template_record,
)

__all__ = [
    "make_definitions",
    "make_entry",
    "make_phase",
    "make_template",
    "make_template_record",
]
