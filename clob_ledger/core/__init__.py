"""
Core domain models, wire contracts, and the error taxonomy.

This module contains the foundational building blocks that are independent
of the HTTP transport and of the settlement workflow.
"""
