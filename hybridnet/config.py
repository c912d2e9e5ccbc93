"""Training configuration."""

from dataclasses import asdict, dataclass
from typing import Optional

from .losses import get_error_measure

MAX_CNN_EPOCH = 1024
EVAL_BATCH_SIZE = 2048


@dataclass(frozen=True)
class Config:
    """
    Hyperparameters of one training run. Read-only once built.

    Args:
        learning_rate: Initial gradient-descent step size
        min_valid_accuracy: Validation accuracy the run must exceed before it
            is allowed to stop early
        max_epoch: Hard ceiling on the number of epochs
        n_non_inc_epoch: Patience window; the validation error must not have
            increased over this many most recent epochs to stop
        batch_size: Samples per training mini-batch
        dropout: Fraction of hidden units dropped per forward pass (0 = off)
        cache_size: Memory cache capacity in megabytes
        eval_batch_size: Samples per batch in evaluation passes
        error_measure: 'cross_entropy' or 'l2'
        seed: Seed for weight initialization and dropout masks
    """

    learning_rate: float = 0.1
    min_valid_accuracy: float = 0.5
    max_epoch: int = 100000
    n_non_inc_epoch: int = 6
    batch_size: int = 32
    dropout: float = 0.0
    cache_size: float = 16
    eval_batch_size: int = EVAL_BATCH_SIZE
    error_measure: str = 'cross_entropy'
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0 <= self.min_valid_accuracy <= 1:
            raise ValueError(f"min_valid_accuracy must be in [0, 1], got {self.min_valid_accuracy}")
        if self.max_epoch < 1:
            raise ValueError(f"max_epoch must be positive, got {self.max_epoch}")
        if self.n_non_inc_epoch < 0:
            raise ValueError(f"n_non_inc_epoch must be non-negative, got {self.n_non_inc_epoch}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.eval_batch_size < 1:
            raise ValueError(f"eval_batch_size must be positive, got {self.eval_batch_size}")
        if not 0 <= self.dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")
        if not self.cache_size > 0:
            raise ValueError(f"cache_size must be positive, got {self.cache_size}")
        get_error_measure(self.error_measure)

    def show(self) -> None:
        print("Training configuration:")
        for name, value in asdict(self).items():
            print(f"  {name:<20} {value}")
