"""
Rental Backup - Source Package

The backup/restore engine of a rental-management application: exports
the full persisted state (tenants, bills, prices, meter-name overrides)
to a portable JSON snapshot and restores it again.

DESIGN PRINCIPLES:
1. Parse once, normalize once, validate the canonical shape
2. One bad record never aborts a restore
3. Restore is a full replace, never a merge
4. Every operation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Rental Backup Team"
