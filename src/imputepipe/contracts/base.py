"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for internal
orchestration invariants.
"""

from imputepipe.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce an orchestration contract.

    Fail-fast: no recovery, no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation (for debugging).

    Raises
    ------
    ContractViolation
        If condition is False. This indicates a bug in pipeline logic.

    Examples
    --------
    >>> require(len(units) == 22, "Planner contract: 22 chromosome units expected")
    """
    if not condition:
        raise ContractViolation(message)
