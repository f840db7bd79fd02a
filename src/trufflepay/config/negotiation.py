from pydantic import BaseModel, Field, model_validator


class NegotiationSettings(BaseModel):
    max_rounds: int = 3

    # Fractions of the listing price offered per round when no reasoning
    # policy is available. Round N uses index N-1, the last entry repeats.
    # Seller counters are clamped to the floor, so 0.0 means "counter at floor".
    buyer_schedule: list[float] = Field(default_factory=lambda: [0.65, 0.80, 0.90])
    seller_schedule: list[float] = Field(default_factory=lambda: [0.90, 0.85, 0.0])

    # Decimal places kept on the agreed price
    precision: int = 2

    @model_validator(mode="after")
    def validate_schedules(self) -> "NegotiationSettings":
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if not self.buyer_schedule or not self.seller_schedule:
            raise ValueError("negotiation schedules cannot be empty")
        if any(b2 < b1 for b1, b2 in zip(self.buyer_schedule, self.buyer_schedule[1:])):
            raise ValueError("buyer_schedule must be non-decreasing")
        if any(not 0 <= f <= 1 for f in self.buyer_schedule + self.seller_schedule):
            raise ValueError("schedule fractions must be within [0, 1]")
        return self
