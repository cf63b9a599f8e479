"""
NBO Learning: feedback and calibration loop for Next Best Orbit recommendations.

Architecture:
    nbo_learning/
    ├── db/              # SQLAlchemy engine and models
    ├── learning/        # Recorder, measurer, maturation scanner, metrics, performance
    ├── services/        # Background scheduler
    ├── config.py        # Pydantic settings
    ├── exceptions.py    # Structured errors
    └── logging_config.py

Data Flow:
    Operator feedback → Recorder → nbo_feedback
    Manual measurement → Measurer ┐
    Maturation scan (30 days)  ───┴→ outcomes
    → Metrics Calculator → Performance Evaluator → health verdict

Version: 1.0.0
"""

__version__ = "1.0.0"
