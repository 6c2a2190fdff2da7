from dataclasses import dataclass


@dataclass
class Account:
    id: int
    name: str
    description: str = ""
    base_balance: float = 0.0   # set manually; the spendable balance is derived
    created_at: str = ""
