"""
Module: rcti_kernel.db.types
Responsibility: Annotated column types for monetary amounts, hours and rates,
    so every ORM model stores them with identical precision.
Architecture position: Kernel > DB.  May be imported by ORM models; MUST NOT
    import from outer layers.

Usage:
    amount: Mapped[Money] = mapped_column(nullable=False)
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String
from sqlalchemy.orm import mapped_column

# Money is always normalised to 2 places before it is stored
Money = Annotated[Decimal, mapped_column(Numeric(14, 2, asdecimal=True))]

# Hours and hourly rates keep the precision they were entered with
Hours = Annotated[Decimal, mapped_column(Numeric(18, 6, asdecimal=True))]
Rate = Annotated[Decimal, mapped_column(Numeric(24, 9, asdecimal=True))]

# Enum .value strings
ShortCode = Annotated[str, mapped_column(String(50))]

# Descriptions and names
LongText = Annotated[str, mapped_column(String(4000))]
