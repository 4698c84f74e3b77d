"""
Loan Engine

Financial core of a consumer-loan backend: EMI amortization, loan lifecycle
state machine, repayment schedule generation and repayment processing.
All money math uses Decimal and every state change is version-checked.
"""

__version__ = "1.0.0"
