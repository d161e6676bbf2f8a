"""
Face Attendance - Face Recognition Attendance Pipeline

Matches live camera captures against enrolled face descriptors and
records attendance with quality scoring, cooldown and retry limits.
"""

__version__ = "1.0.0"
__author__ = "Face Attendance Team"
