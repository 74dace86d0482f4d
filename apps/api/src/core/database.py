# apps/api/src/core/database.py
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prisma import Prisma


def create_prisma_client() -> "Prisma":
    """Build the Prisma client used for the lifetime of the application."""
    from prisma import Prisma

    return Prisma()
