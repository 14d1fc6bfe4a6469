"""
RCTI Kernel

Infrastructure shared by the RCTI engines and modules:
- Decimal money with banker's rounding
- Typed, coded exceptions
- Structured JSON logging
- SQLAlchemy base, engine and transactional session scope
"""

__version__ = "0.1.0"
