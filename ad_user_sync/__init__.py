"""
AD User Sync - Push user attributes from an HR database into Active Directory.

This package reconciles user records from an authoritative relational database
with the matching entries in an LDAP / Active Directory store, updating the
directory whenever a mapped attribute differs.
"""

__version__ = "1.0.0"
__author__ = "AD User Sync Team"
