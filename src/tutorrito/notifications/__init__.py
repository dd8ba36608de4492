"""Arrival notification pipeline: compose, deliver and record."""
