"""Funding Platform - grant and funding-application management backend.

Applicants submit proposals against funding calls, coordinators configure
calls and assign assessors, assessors score applications.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
