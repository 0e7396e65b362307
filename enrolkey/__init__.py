"""Enrolment key based self-registration service."""
