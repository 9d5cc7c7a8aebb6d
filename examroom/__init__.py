"""Application package for ExamRoom, the online exam and grading system."""
