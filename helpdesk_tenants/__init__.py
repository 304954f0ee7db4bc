"""
Helpdesk tenant partitioning pipeline.

This package turns a snapshot of Freshdesk tickets into per-tenant ticket
files: tickets are normalized, companies sharing requesters are unified
into groups, and each group gets its own partition for the reporting
frontend.
"""

__version__ = "1.0.0"
__author__ = "Automation Engineer"
