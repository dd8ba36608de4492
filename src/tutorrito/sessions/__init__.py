"""Tutoring sessions, profiles and upcoming-session lookup."""
