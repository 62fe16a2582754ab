"""Regportal - regulatory compliance portal backend.

Session bridging for the compliance portal and case-management CRM: the
external authentication microservice remains the identity authority while
sessions, their analytics trail, and role gating live locally.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
