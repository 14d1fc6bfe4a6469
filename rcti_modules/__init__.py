"""
RCTI Modules.

Thin orchestration layers over the RCTI kernel and engines.  Each module
contains domain models, ORM persistence, configuration and a service facade.

Modules:
- Invoicing: RCTI drafting, lifecycle, surcharges and recurring deductions
"""

from rcti_modules import invoicing

__all__ = ["invoicing"]
