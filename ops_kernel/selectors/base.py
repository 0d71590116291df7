"""
Module: ops_kernel.selectors.base
Responsibility: Base class for the read-only query side of the kernel.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Selectors never add, delete, flush or commit.  The auditor and the
      inventory validator both run against a live store and must leave it
      exactly as they found it.
    - Session ownership stays with the caller.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Base for read-only selectors.

    Contract:
        Accepts a Session from the caller and returns frozen results, not
        ORM instances, from its public query methods.
    """

    def __init__(self, session: Session):
        self.session = session
