"""Timed exam session and grading core for the Online Examination System."""
