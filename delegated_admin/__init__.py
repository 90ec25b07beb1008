"""Delegated Admin Manager.

Manages delegated-administration trust between a partner tenant and its
customer tenants: bootstrapping the service identity, bulk customer consent,
and the lifecycle of delegated-admin relationships and access assignments.
"""

__version__ = "0.1.0"
