"""Exam attempt lifecycle and auto-grading engine."""
