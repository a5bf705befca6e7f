"""Branch prediction strategies used by the pipeline's decode stage."""

from __future__ import annotations

import enum

PRED_BUF_SIZE = 4096


class Strategy(enum.Enum):
    """Available prediction strategies, keyed by their command-line names."""

    AT = "AT"  # always taken
    NT = "NT"  # always not taken
    BTFNT = "BTFNT"  # backward taken, forward not taken
    BPB = "BPB"  # branch prediction buffer with two bits of history


_STRATEGY_NAMES = {
    Strategy.NT: "Always Not Taken",
    Strategy.AT: "Always Taken",
    Strategy.BTFNT: "Back Taken Forward Not Taken",
    Strategy.BPB: "Branch Prediction Buffer",
}


class PredictorState(enum.IntEnum):
    """Two-bit saturating counter state of one prediction buffer entry."""

    STRONG_TAKEN = 0
    WEAK_TAKEN = 1
    WEAK_NOT_TAKEN = 2
    STRONG_NOT_TAKEN = 3

    @property
    def taken(self) -> bool:
        return self in (PredictorState.STRONG_TAKEN, PredictorState.WEAK_TAKEN)


# Counter positions from "never taken" to "always taken".
_LADDER = (
    PredictorState.STRONG_NOT_TAKEN,
    PredictorState.WEAK_NOT_TAKEN,
    PredictorState.WEAK_TAKEN,
    PredictorState.STRONG_TAKEN,
)


class BranchPredictor:
    """Predicts whether a conditional branch will be taken."""

    def __init__(self, strategy: Strategy | str = Strategy.NT) -> None:
        self.strategy = Strategy(strategy)
        self._buffer = [PredictorState.WEAK_TAKEN] * PRED_BUF_SIZE

    def predict(self, pc: int, insttype: object, op1: int, op2: int, offset: int) -> bool:
        """Return True if the branch at ``pc`` is predicted taken."""
        if self.strategy is Strategy.NT:
            return False
        if self.strategy is Strategy.AT:
            return True
        if self.strategy is Strategy.BTFNT:
            return offset < 0
        return self._buffer[pc % PRED_BUF_SIZE].taken

    def update(self, pc: int, branch: bool) -> None:
        """Record the real outcome of the branch at ``pc`` in the buffer."""
        index = pc % PRED_BUF_SIZE
        position = _LADDER.index(self._buffer[index])
        if branch:
            position = min(position + 1, len(_LADDER) - 1)
        else:
            position = max(position - 1, 0)
        self._buffer[index] = _LADDER[position]

    def strategy_name(self) -> str:
        """Human-readable name of the current strategy."""
        return _STRATEGY_NAMES[self.strategy]