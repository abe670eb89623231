from typing import Optional


class EMA:
    """Exponential moving average for scalars, seeded at zero like the depth signal."""

    def __init__(self, alpha: float = 0.35, initial: float = 0.0):
        self.alpha = alpha
        self.initial = initial
        self.val: float = initial

    def update(self, x: float) -> float:
        self.val = self.alpha * x + (1 - self.alpha) * self.val
        return self.val

    def reset(self, value: Optional[float] = None):
        self.val = self.initial if value is None else value
