from .strategies import (
    RotationStrategy,
    STRATEGIES,
    get_strategy,
    generate_secret_data,
)

__all__ = ["RotationStrategy", "STRATEGIES", "get_strategy", "generate_secret_data"]
