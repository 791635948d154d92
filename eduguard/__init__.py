"""
EduGuard: student dropout risk detection engine and REST API
"""
__version__ = "1.0.0"
