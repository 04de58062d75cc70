"""Core application components.

This module provides the foundational components for the Broker API:
- Database connection management via Prisma
- Application settings and configuration
- The Supabase auth provider client
"""
