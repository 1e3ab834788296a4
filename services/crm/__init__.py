"""
CRM Vector Sync - CRM Source
Typed read access to Odoo crm.lead records
"""

from .client import LEAD_FIELDS, STANDARD_LEAD_FIELDS, CrmSource, OdooClient

__all__ = ["CrmSource", "OdooClient", "LEAD_FIELDS", "STANDARD_LEAD_FIELDS"]
