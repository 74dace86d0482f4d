"""Core application components.

- Database connection management via Prisma
- Application settings loaded from the environment
"""
